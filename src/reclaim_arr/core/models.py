"""Data models exchanged between clients and services."""

from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class TorrentFile(BaseModel):
    """File within a torrent."""

    name: str
    size: int


class TorrentInfo(BaseModel):
    """Information about a torrent from qBittorrent."""

    hash: str
    name: str = ""
    tracker: Optional[str] = None
    ratio: float = 0.0
    seeding_time: int = 0
    uploaded: int = 0
    downloaded: int = 0
    size: int = 0
    state: str = ""
    content_path: Optional[str] = None
    added_on: Optional[int] = None
    last_activity: Optional[int] = None


class RadarrFile(BaseModel):
    """A movie file as reported by Radarr."""

    path: str
    relative_path: Optional[str] = None
    size: int = 0


class HistoryRecord(BaseModel):
    """A grab event from Radarr history."""

    download_id: str
    movie_id: int


class RadarrMovie(BaseModel):
    """Movie from Radarr."""

    id: int
    title: str
    tmdb_id: Optional[int] = None
    original_title: Optional[str] = None
    year: Optional[int] = None
    overview: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    runtime: Optional[int] = None
    rating: Optional[float] = None
    poster_url: Optional[str] = None
    monitored: bool = False
    has_file: bool = False


class TmdbMovie(BaseModel):
    """Search result or detail record from TMDB."""

    id: int
    title: str = "Unknown"
    original_title: Optional[str] = None
    year: Optional[int] = None
    synopsis: Optional[str] = None
    poster_url: Optional[str] = None
    backdrop_url: Optional[str] = None
    genres: Optional[str] = None
    rating: Optional[float] = None
    runtime_minutes: Optional[int] = None


class ParsedName(BaseModel):
    """Fields extracted from a media file name."""

    title: Optional[str] = None
    year: Optional[int] = None
    resolution: Optional[str] = None
    quality: Optional[str] = None
    codec: Optional[str] = None


class RootFolderMapping(BaseModel):
    """An external root folder translated onto a volume."""

    external_root: str
    volume: Any
    volume_subpath: str = ""

    model_config = ConfigDict(arbitrary_types_allowed=True)


class MatchStatistics(BaseModel):
    """Counters from a catalogue matching run."""

    radarr_matched: int = 0
    parse_matched: int = 0
    total_links: int = 0


class CatalogueSyncResult(BaseModel):
    """Counters from a Radarr catalogue import."""

    imported: int = 0
    updated: int = 0
    enriched: int = 0
    matching: MatchStatistics = Field(default_factory=MatchStatistics)


class TorrentSyncResult(BaseModel):
    """Counters from a torrent reconciliation pass."""

    torrents_synced: int = 0
    new_trackers: int = 0
    unmatched: int = 0
    stale_removed: int = 0
    errors: int = 0


class VolumeSyncResult(BaseModel):
    created: int = 0
    reactivated: int = 0
    deactivated: int = 0


class DeletionItemReport(BaseModel):
    """Outcome of one ScheduledDeletionItem."""

    item_id: int
    movie: Optional[str] = None
    files_deleted: int = 0
    files_failed: int = 0
    space_freed_bytes: int = 0
    radarr_dereferenced: bool = False
    media_player_dereferenced: bool = False
    status: str = "pending"
    errors: List[str] = Field(default_factory=list)


class DeletionReport(BaseModel):
    """Execution report persisted on a ScheduledDeletion."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    success_count: int = 0
    failed_count: int = 0
    space_freed_bytes: int = 0
    items: List[DeletionItemReport] = Field(default_factory=list)
    error: Optional[str] = None


class ReplacementSuggestion(BaseModel):
    """Ranked replacement candidates for a served file."""

    suggested: Optional[Any] = None
    alternatives: List[Any] = Field(default_factory=list)

    model_config = ConfigDict(arbitrary_types_allowed=True)
