"""TMDB search client."""

from typing import Any, Dict, List, Optional
import logging

import requests

from reclaim_arr.config import TmdbConfig
from reclaim_arr.core.models import TmdbMovie
from reclaim_arr.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

IMAGE_BASE_URL = "https://image.tmdb.org/t/p"


def _image_url(path: Optional[str], size: str) -> Optional[str]:
    if not path:
        return None
    return f"{IMAGE_BASE_URL}/{size}{path}"


def _year(release_date: Optional[str]) -> Optional[int]:
    if not release_date or len(release_date) < 4 or not release_date[:4].isdigit():
        return None
    return int(release_date[:4])


class TmdbClient:
    """Thin wrapper over the TMDB v3 API."""

    def __init__(self, config: TmdbConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        query = {"api_key": self.config.api_key, "language": self.config.language}
        query.update(params or {})
        try:
            resp = self.session.get(
                f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}",
                params=query,
                timeout=self.config.timeout,
            )
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            logger.warning(f"TMDB request {endpoint} failed: {e}")
            raise ExternalServiceError("tmdb", f"GET {endpoint} failed: {e}", e) from e

    def search(self, title: str, year: Optional[int] = None) -> List[TmdbMovie]:
        """Search movies by title, optionally narrowed to a release year."""
        if not self.is_configured:
            return []

        params: Dict[str, Any] = {"query": title}
        if year is not None:
            params["year"] = year

        data = self._get("search/movie", params)
        return [
            TmdbMovie(
                id=result["id"],
                title=result.get("title") or "Unknown",
                original_title=result.get("original_title"),
                year=_year(result.get("release_date")),
                synopsis=result.get("overview") or None,
                poster_url=_image_url(result.get("poster_path"), "w500"),
                backdrop_url=_image_url(result.get("backdrop_path"), "original"),
            )
            for result in data.get("results", [])
            if result.get("id")
        ]

    def get_movie(self, tmdb_id: int) -> Optional[TmdbMovie]:
        """Full details for one movie, or None when TMDB is not configured."""
        if not self.is_configured:
            return None

        details = self._get(f"movie/{tmdb_id}")
        genres = ", ".join(g["name"] for g in details.get("genres", []) if g.get("name"))
        rating = details.get("vote_average")

        return TmdbMovie(
            id=tmdb_id,
            title=details.get("title") or "Unknown",
            original_title=details.get("original_title"),
            year=_year(details.get("release_date")),
            synopsis=details.get("overview") or None,
            poster_url=_image_url(details.get("poster_path"), "w500"),
            backdrop_url=_image_url(details.get("backdrop_path"), "original"),
            genres=genres or None,
            rating=round(rating, 1) if rating else None,
            runtime_minutes=details.get("runtime") or None,
        )
