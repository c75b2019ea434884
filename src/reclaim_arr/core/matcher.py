"""Link media files to catalogue entries."""

from typing import Callable, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from reclaim_arr.api.radarr_client import RadarrClient
from reclaim_arr.api.tmdb_client import TmdbClient
from reclaim_arr.core import filename_parser, path_remapper
from reclaim_arr.core.models import MatchStatistics, ParsedName
from reclaim_arr.core.volumes import active_volumes
from reclaim_arr.db.models import MatchedBy, MediaFile, Movie, MovieFile, RadarrInstance, Volume
from reclaim_arr.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

RadarrFactory = Callable[[RadarrInstance], RadarrClient]

RADARR_CONFIDENCE = 1.0


class CatalogueMatcher:
    """
    Matches MediaFiles to Movies.

    Radarr's own file list is authoritative (confidence 1.0). Files Radarr
    does not know about fall back to filename parsing, looked up locally
    first and then through a TMDB search.
    """

    def __init__(
        self,
        session: Session,
        radarr_factory: RadarrFactory,
        tmdb: Optional[TmdbClient] = None,
        batch_size: int = 50,
    ):
        self.session = session
        self.radarr_factory = radarr_factory
        self.tmdb = tmdb
        self.batch_size = batch_size

        # Tried in order; each returns a Movie or None without touching the session
        self.parse_strategies: List[Callable[[ParsedName], Optional[Movie]]] = [
            self._find_local,
            self._find_via_search,
        ]

    def match_all(self) -> MatchStatistics:
        """Run Radarr matching, then filename matching, over every file."""
        stats = MatchStatistics(
            radarr_matched=self.match_via_radarr(),
            parse_matched=self.match_via_filename(),
        )
        stats.total_links = self.session.query(MovieFile).count()
        logger.info(
            f"Matching done: {stats.radarr_matched} via Radarr, "
            f"{stats.parse_matched} via filename, {stats.total_links} links total"
        )
        return stats

    # -- Radarr ------------------------------------------------------------

    def _active_instances(self) -> List[RadarrInstance]:
        return self.session.query(RadarrInstance).filter_by(is_active=True).all()

    def _lookup(self, volume: Volume, relative_path: str) -> Optional[MediaFile]:
        return self.session.query(MediaFile).filter_by(volume_id=volume.id, file_path=relative_path).first()

    def _instance_mappings(self, client: RadarrClient, instance: RadarrInstance):
        roots = client.get_root_folders()
        instance.root_folders = roots
        return path_remapper.build_mappings(roots, active_volumes(self.session))

    def match_via_radarr(self) -> int:
        matched = 0
        for instance in self._active_instances():
            try:
                matched += self._match_instance(instance)
            except ExternalServiceError as e:
                logger.error(f"Radarr matching failed for instance '{instance.name}': {e}")
        return matched

    def _match_instance(self, instance: RadarrInstance) -> int:
        client = self.radarr_factory(instance)
        mappings = self._instance_mappings(client, instance)
        movies = (
            self.session.query(Movie)
            .filter(Movie.radarr_instance_id == instance.id, Movie.radarr_id.isnot(None))
            .all()
        )

        matched = 0
        for movie in movies:
            try:
                radarr_files = client.get_movie_files(movie.radarr_id)
            except ExternalServiceError as e:
                logger.debug(f"Failed to get files for '{movie.title}' (radarr id {movie.radarr_id}): {e}")
                continue

            for radarr_file in radarr_files:
                media_file = path_remapper.remap(radarr_file.path, mappings, self._lookup)
                if media_file is None:
                    continue
                if self._link(movie, media_file, MatchedBy.RADARR_API, RADARR_CONFIDENCE):
                    media_file.is_linked_radarr = True
                    media_file.radarr_instance_id = instance.id
                    matched += 1

        self.session.flush()
        return matched

    def _match_file_via_radarr(self, media_file: MediaFile) -> Optional[Tuple[Movie, RadarrInstance]]:
        for instance in self._active_instances():
            try:
                client = self.radarr_factory(instance)
                mappings = self._instance_mappings(client, instance)
            except ExternalServiceError as e:
                logger.debug(f"Skipping Radarr '{instance.name}' for single-file match: {e}")
                continue

            movies = (
                self.session.query(Movie)
                .filter(Movie.radarr_instance_id == instance.id, Movie.radarr_id.isnot(None))
                .all()
            )
            for movie in movies:
                try:
                    radarr_files = client.get_movie_files(movie.radarr_id)
                except ExternalServiceError:
                    continue
                for radarr_file in radarr_files:
                    if path_remapper.remap(radarr_file.path, mappings, self._lookup) is media_file:
                        return movie, instance
        return None

    # -- Filename ------------------------------------------------------------

    def _find_local(self, parsed: ParsedName) -> Optional[Movie]:
        query = self.session.query(Movie).filter(Movie.title.icontains(parsed.title, autoescape=True))
        if parsed.year is not None:
            query = query.filter(Movie.year == parsed.year)
        return query.order_by(Movie.id).first()

    def _find_via_search(self, parsed: ParsedName) -> Optional[Movie]:
        if self.tmdb is None or parsed.year is None:
            return None

        try:
            results = self.tmdb.search(parsed.title, parsed.year)
        except ExternalServiceError as e:
            logger.debug(f"TMDB search failed for '{parsed.title}' ({parsed.year}): {e}")
            return None

        if not results:
            return None
        return self.session.query(Movie).filter_by(tmdb_id=results[0].id).first()

    def _match_by_name(self, media_file: MediaFile) -> Optional[Tuple[Movie, float]]:
        parsed = filename_parser.parse(media_file.file_name)
        if not parsed.title:
            return None

        # Fill in what the scan could not tell, never overwrite
        if media_file.resolution is None and parsed.resolution:
            media_file.resolution = parsed.resolution
        if media_file.quality is None and parsed.quality:
            media_file.quality = parsed.quality
        if media_file.codec is None and parsed.codec:
            media_file.codec = parsed.codec

        for strategy in self.parse_strategies:
            movie = strategy(parsed)
            if movie is not None:
                return movie, filename_parser.confidence(parsed)
        return None

    def _unlinked_files(self) -> List[MediaFile]:
        return (
            self.session.query(MediaFile)
            .outerjoin(MovieFile, MovieFile.media_file_id == MediaFile.id)
            .filter(MovieFile.id.is_(None))
            .order_by(MediaFile.id)
            .all()
        )

    def match_via_filename(self) -> int:
        unlinked = self._unlinked_files()
        logger.info(f"Starting filename matching for {len(unlinked)} unlinked files")

        matched = 0
        for processed, media_file in enumerate(unlinked, 1):
            found = self._match_by_name(media_file)
            if found is not None:
                movie, confidence = found
                if self._link(movie, media_file, MatchedBy.FILENAME_PARSE, confidence):
                    matched += 1

            if processed % self.batch_size == 0:
                self.session.commit()

        self.session.commit()
        return matched

    # -- Shared --------------------------------------------------------------

    def _link(self, movie: Movie, media_file: MediaFile, matched_by: MatchedBy, confidence: float) -> bool:
        """Create the Movie/MediaFile link unless it already exists."""
        exists = (
            self.session.query(MovieFile.id)
            .filter_by(movie_id=movie.id, media_file_id=media_file.id)
            .first()
        )
        if exists is not None:
            return False

        self.session.add(MovieFile(
            movie=movie,
            media_file=media_file,
            matched_by=matched_by.value,
            confidence=confidence,
        ))
        self.session.flush()
        logger.debug(f"Linked '{media_file.file_name}' to '{movie.title}' ({matched_by.value}, {confidence})")
        return True

    def _existing_link(self, movie: Movie, media_file: MediaFile) -> Optional[MovieFile]:
        return self.session.query(MovieFile).filter_by(movie_id=movie.id, media_file_id=media_file.id).first()

    def match_single_file(self, media_file: MediaFile) -> Optional[MovieFile]:
        """Match one newly detected file; returns its link or None."""
        via_radarr = self._match_file_via_radarr(media_file)
        if via_radarr is not None:
            movie, instance = via_radarr
            self._link(movie, media_file, MatchedBy.RADARR_API, RADARR_CONFIDENCE)
            media_file.is_linked_radarr = True
            media_file.radarr_instance_id = instance.id
            self.session.flush()
            return self._existing_link(movie, media_file)

        via_name = self._match_by_name(media_file)
        if via_name is not None:
            movie, confidence = via_name
            self._link(movie, media_file, MatchedBy.FILENAME_PARSE, confidence)
            return self._existing_link(movie, media_file)

        return None
