"""Radarr API client wrapper."""

from typing import Any, Dict, List, Optional
import logging

from pyarr import RadarrAPI
from pyarr.exceptions import PyarrConnectionError

from reclaim_arr.config import PathsConfig
from reclaim_arr.core.models import HistoryRecord, RadarrFile, RadarrMovie
from reclaim_arr.db.models import RadarrInstance
from reclaim_arr.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

HISTORY_PAGE_SIZE = 1000


def _poster_url(movie: Dict[str, Any]) -> Optional[str]:
    for image in movie.get("images") or []:
        if image.get("coverType") == "poster":
            return image.get("remoteUrl") or image.get("url")
    return None


def _rating(movie: Dict[str, Any]) -> Optional[float]:
    ratings = movie.get("ratings") or {}
    if "value" in ratings:
        return ratings.get("value")
    for source in ("tmdb", "imdb"):
        if source in ratings:
            return ratings[source].get("value")
    return None


class RadarrClient:
    """Client for interacting with one Radarr instance."""

    def __init__(self, instance: RadarrInstance, path_config: Optional[PathsConfig] = None):
        """Initialize Radarr client."""
        self.instance = instance
        self.path_config = path_config
        self._client: Optional[RadarrAPI] = None

    def _remap(self, path: str) -> str:
        if self.path_config:
            return self.path_config.remap_path(path)
        return path

    def _fail(self, action: str, e: Exception) -> ExternalServiceError:
        logger.error(f"Failed to {action} from Radarr '{self.instance.name}': {e}")
        return ExternalServiceError("radarr", f"{action} failed for {self.instance.url}: {e}", e)

    def connect(self) -> None:
        """Establish connection to Radarr."""
        try:
            self._client = RadarrAPI(host_url=self.instance.url, api_key=self.instance.api_key)
            # Test connection
            self._client.get_system_status()
            logger.info(f"Connected to Radarr at {self.instance.url}")
        except PyarrConnectionError as e:
            raise self._fail("connect", e) from e
        except Exception as e:
            raise self._fail("connect", e) from e

    @property
    def client(self) -> RadarrAPI:
        if not self._client:
            self.connect()
        return self._client

    def get_system_status(self) -> Dict[str, Any]:
        try:
            return self.client.get_system_status()
        except ExternalServiceError:
            raise
        except Exception as e:
            raise self._fail("get system status", e) from e

    def get_root_folders(self) -> List[str]:
        """Root folder paths, remapped to host paths."""
        try:
            folders = self.client.get_root_folder()
        except ExternalServiceError:
            raise
        except Exception as e:
            raise self._fail("get root folders", e) from e

        return [self._remap(folder["path"]) for folder in folders if folder.get("path")]

    def get_movie_files(self, radarr_id: int) -> List[RadarrFile]:
        """Files Radarr holds for one movie."""
        try:
            files = self.client.get_movie_files_by_movie_id(radarr_id)
        except ExternalServiceError:
            raise
        except Exception as e:
            raise self._fail(f"get files for movie {radarr_id}", e) from e

        if isinstance(files, dict):
            files = [files]

        return [
            RadarrFile(
                path=self._remap(f["path"]),
                relative_path=f.get("relativePath"),
                size=f.get("size", 0),
            )
            for f in files
            if f.get("path")
        ]

    def get_history(self) -> List[HistoryRecord]:
        """Download ids Radarr grabbed, with the movie they belong to."""
        try:
            history = self.client.get_history(page=1, page_size=HISTORY_PAGE_SIZE)
        except ExternalServiceError:
            raise
        except Exception as e:
            raise self._fail("get history", e) from e

        records = history.get("records", []) if isinstance(history, dict) else history
        return [
            HistoryRecord(download_id=record["downloadId"], movie_id=record["movieId"])
            for record in records
            if record.get("downloadId") and record.get("movieId")
        ]

    def get_movies(self) -> List[RadarrMovie]:
        """Get all movies from Radarr."""
        try:
            movies = self.client.get_movie()
        except ExternalServiceError:
            raise
        except Exception as e:
            raise self._fail("get movies", e) from e

        media_list = [
            RadarrMovie(
                id=movie["id"],
                title=movie["title"],
                tmdb_id=movie.get("tmdbId") or None,
                original_title=movie.get("originalTitle"),
                year=movie.get("year") or None,
                overview=movie.get("overview"),
                genres=movie.get("genres") or [],
                runtime=movie.get("runtime") or None,
                rating=_rating(movie),
                poster_url=_poster_url(movie),
                monitored=movie.get("monitored", False),
                has_file=movie.get("hasFile", False),
            )
            for movie in movies
        ]

        logger.info(f"Retrieved {len(media_list)} movies from Radarr '{self.instance.name}'")
        return media_list

    def dereference(self, radarr_id: int, delete_files: bool = False, add_exclusion: bool = False) -> None:
        """Remove the movie from Radarr."""
        try:
            self.client.del_movie(radarr_id, delete_files=delete_files, add_exclusion=add_exclusion)
            logger.info(f"Removed movie {radarr_id} from Radarr '{self.instance.name}'")
        except ExternalServiceError:
            raise
        except Exception as e:
            raise self._fail(f"remove movie {radarr_id}", e) from e

    def update_monitoring(self, radarr_id: int, monitored: bool) -> None:
        try:
            movie = self.client.get_movie(radarr_id)
            if isinstance(movie, list):
                movie = movie[0]
            movie["monitored"] = monitored
            self.client.upd_movie(movie)
            logger.info(f"Set monitored={monitored} for movie {radarr_id} on '{self.instance.name}'")
        except ExternalServiceError:
            raise
        except Exception as e:
            raise self._fail(f"update monitoring for movie {radarr_id}", e) from e

    def rescan_movie(self, radarr_id: int) -> None:
        try:
            self.client.post_command("RescanMovie", movieId=radarr_id)
        except ExternalServiceError:
            raise
        except Exception as e:
            raise self._fail(f"rescan movie {radarr_id}", e) from e
