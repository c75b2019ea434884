"""Import the Radarr catalogue into the local Movie table."""

from typing import Callable, Optional
import logging

from sqlalchemy.orm import Session

from reclaim_arr.api.radarr_client import RadarrClient
from reclaim_arr.api.tmdb_client import TmdbClient
from reclaim_arr.core.matcher import CatalogueMatcher
from reclaim_arr.core.models import CatalogueSyncResult, RadarrMovie
from reclaim_arr.db.models import Movie, RadarrInstance, utcnow
from reclaim_arr.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


def _set_if_empty(movie: Movie, attr: str, value) -> None:
    if value in (None, "", 0):
        return
    if getattr(movie, attr) in (None, "", 0):
        setattr(movie, attr, value)


class CatalogueSyncService:
    """Pulls movies from every active Radarr instance, then runs matching."""

    def __init__(
        self,
        session: Session,
        radarr_factory: Callable[[RadarrInstance], RadarrClient],
        matcher: CatalogueMatcher,
        tmdb: Optional[TmdbClient] = None,
        batch_size: int = 50,
    ):
        self.session = session
        self.radarr_factory = radarr_factory
        self.matcher = matcher
        self.tmdb = tmdb
        self.batch_size = batch_size

    def sync(self) -> CatalogueSyncResult:
        result = CatalogueSyncResult()

        for instance in self.session.query(RadarrInstance).filter_by(is_active=True).all():
            try:
                self._sync_instance(instance, result)
            except ExternalServiceError as e:
                logger.error(f"Radarr sync failed for instance '{instance.name}': {e}")
                self.session.rollback()

        result.matching = self.matcher.match_all()
        return result

    def _sync_instance(self, instance: RadarrInstance, result: CatalogueSyncResult) -> None:
        client = self.radarr_factory(instance)
        instance.root_folders = client.get_root_folders()

        radarr_movies = client.get_movies()
        logger.info(f"Found {len(radarr_movies)} movies in Radarr '{instance.name}'")

        for processed, radarr_movie in enumerate(radarr_movies, 1):
            movie = self._find_or_create(radarr_movie, instance, result)
            self._apply_radarr(movie, radarr_movie, instance)
            self._enrich(movie, result)

            if processed % self.batch_size == 0:
                self.session.commit()
                logger.info(f"Processed {processed}/{len(radarr_movies)} movies...")

        instance.last_sync_at = utcnow()
        self.session.commit()
        logger.info(
            f"Instance {instance.name}: {result.imported} imported, "
            f"{result.updated} updated, {result.enriched} enriched"
        )

    def _find_or_create(self, radarr_movie: RadarrMovie, instance: RadarrInstance, result: CatalogueSyncResult) -> Movie:
        movie = None
        if radarr_movie.tmdb_id is not None:
            movie = self.session.query(Movie).filter_by(tmdb_id=radarr_movie.tmdb_id).first()
        if movie is None:
            movie = (
                self.session.query(Movie)
                .filter_by(radarr_id=radarr_movie.id, radarr_instance_id=instance.id)
                .first()
            )

        if movie is not None:
            result.updated += 1
            return movie

        movie = Movie(title=radarr_movie.title, tmdb_id=radarr_movie.tmdb_id)
        self.session.add(movie)
        result.imported += 1
        return movie

    def _apply_radarr(self, movie: Movie, radarr_movie: RadarrMovie, instance: RadarrInstance) -> None:
        movie.radarr_id = radarr_movie.id
        movie.radarr_instance = instance
        movie.radarr_monitored = radarr_movie.monitored
        movie.radarr_has_file = radarr_movie.has_file

        _set_if_empty(movie, "original_title", radarr_movie.original_title)
        _set_if_empty(movie, "year", radarr_movie.year)
        _set_if_empty(movie, "synopsis", radarr_movie.overview)
        _set_if_empty(movie, "runtime_minutes", radarr_movie.runtime)
        _set_if_empty(movie, "poster_url", radarr_movie.poster_url)
        if radarr_movie.genres:
            _set_if_empty(movie, "genres", ", ".join(radarr_movie.genres))
        if radarr_movie.rating:
            _set_if_empty(movie, "rating", round(radarr_movie.rating, 1))

    def _enrich(self, movie: Movie, result: CatalogueSyncResult) -> None:
        if self.tmdb is None or movie.tmdb_id is None:
            return
        if movie.poster_url and movie.synopsis and movie.backdrop_url:
            return

        try:
            details = self.tmdb.get_movie(movie.tmdb_id)
        except ExternalServiceError as e:
            logger.debug(f"TMDB enrichment failed for '{movie.title}' ({movie.tmdb_id}): {e}")
            return

        if details is None:
            return

        for attr in (
            "original_title", "year", "synopsis", "poster_url", "backdrop_url",
            "genres", "rating", "runtime_minutes",
        ):
            _set_if_empty(movie, attr, getattr(details, attr))
        result.enriched += 1
