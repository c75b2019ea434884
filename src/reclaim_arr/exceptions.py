"""Exception hierarchy for reclaim-arr."""

from typing import Optional


class ReclaimArrError(Exception):
    """Base class for every error raised by reclaim-arr."""


class ExternalServiceError(ReclaimArrError):
    """An external system (Radarr, qBittorrent, TMDB, watcher) failed or is unreachable."""

    def __init__(self, service: str, message: str, cause: Optional[BaseException] = None):
        self.service = service
        self.cause = cause
        super().__init__(f"{service}: {message}")


class EntityNotFoundError(ReclaimArrError):
    """A referenced row does not exist."""

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class DeletionNotAllowedError(ReclaimArrError):
    """The deletion cannot be created or moved to the requested state."""
