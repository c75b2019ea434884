"""SQLAlchemy models for the reclaim-arr store."""

from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class VolumeStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class TorrentStatus(str, Enum):
    SEEDING = "seeding"
    PAUSED = "paused"
    STALLED = "stalled"
    ERROR = "error"
    COMPLETED = "completed"
    REMOVED = "removed"


class DeletionStatus(str, Enum):
    PENDING = "pending"
    REMINDER_SENT = "reminder_sent"
    EXECUTING = "executing"
    WAITING_WATCHER = "waiting_watcher"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ItemStatus(str, Enum):
    PENDING = "pending"
    DELETED = "deleted"
    FAILED = "failed"


class MatchedBy(str, Enum):
    RADARR_API = "radarr_api"
    FILENAME_PARSE = "filename_parse"


class Volume(Base):
    """A storage root, as seen locally (path) and on the watcher host (host_path)."""
    __tablename__ = "volumes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    path = Column(String, nullable=False)
    host_path = Column(String, nullable=True, unique=True)
    status = Column(String, default=VolumeStatus.ACTIVE.value, nullable=False)
    last_scan_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    media_files = relationship("MediaFile", back_populates="volume", cascade="all, delete-orphan")

    @property
    def root(self) -> str:
        """Host path without trailing slash, falling back to the local path."""
        return (self.host_path or self.path or "").rstrip("/")


class MediaFile(Base):
    """One physical file inside a volume."""
    __tablename__ = "media_files"
    __table_args__ = (UniqueConstraint("volume_id", "file_path", name="uq_media_file_volume_path"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    volume_id = Column(Integer, ForeignKey("volumes.id", ondelete="CASCADE"), nullable=False, index=True)
    file_path = Column(String, nullable=False, index=True)  # relative to the volume root
    file_name = Column(String, nullable=False)
    file_size_bytes = Column(BigInteger, default=0, nullable=False, index=True)
    hardlink_count = Column(Integer, default=1, nullable=False)
    inode = Column(BigInteger, nullable=True)
    device_id = Column(BigInteger, nullable=True)
    resolution = Column(String, nullable=True)
    codec = Column(String, nullable=True)
    quality = Column(String, nullable=True)
    is_linked_radarr = Column(Boolean, default=False, nullable=False)
    is_linked_media_player = Column(Boolean, default=False, nullable=False)
    is_protected = Column(Boolean, default=False, nullable=False)
    file_hash = Column(String, nullable=True)
    partial_hash = Column(String, nullable=True)
    radarr_instance_id = Column(Integer, ForeignKey("radarr_instances.id", ondelete="SET NULL"), nullable=True)
    detected_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    volume = relationship("Volume", back_populates="media_files")
    radarr_instance = relationship("RadarrInstance")
    movie_files = relationship("MovieFile", back_populates="media_file", cascade="all, delete-orphan")
    torrent_stats = relationship("TorrentStat", back_populates="media_file")

    @property
    def absolute_path(self) -> str:
        """Host-visible absolute path of the file."""
        return f"{self.volume.root}/{self.file_path.lstrip('/')}"

    @property
    def directory(self) -> str:
        parent = str(PurePosixPath(self.file_path).parent)
        return "" if parent == "." else parent


class RadarrInstance(Base):
    """A configured Radarr connection."""
    __tablename__ = "radarr_instances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    api_key = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    root_folders = Column(JSON, nullable=True)
    last_sync_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    movies = relationship("Movie", back_populates="radarr_instance")


class Movie(Base):
    """A catalogue entry."""
    __tablename__ = "movies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tmdb_id = Column(Integer, nullable=True, unique=True)
    radarr_id = Column(Integer, nullable=True, index=True)
    radarr_instance_id = Column(Integer, ForeignKey("radarr_instances.id", ondelete="SET NULL"), nullable=True)
    title = Column(String, nullable=False, index=True)
    original_title = Column(String, nullable=True)
    year = Column(Integer, nullable=True)
    synopsis = Column(Text, nullable=True)
    poster_url = Column(String, nullable=True)
    backdrop_url = Column(String, nullable=True)
    genres = Column(String, nullable=True)
    rating = Column(Float, nullable=True)
    runtime_minutes = Column(Integer, nullable=True)
    radarr_monitored = Column(Boolean, default=True, nullable=False)
    radarr_has_file = Column(Boolean, default=False, nullable=False)
    is_protected = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    radarr_instance = relationship("RadarrInstance", back_populates="movies")
    movie_files = relationship(
        "MovieFile",
        back_populates="movie",
        cascade="all, delete-orphan",
        order_by="MovieFile.id",
    )

    @property
    def media_files(self):
        return [link.media_file for link in self.movie_files if link.media_file is not None]


class MovieFile(Base):
    """Link between a catalogue entry and a media file."""
    __tablename__ = "movie_files"
    __table_args__ = (UniqueConstraint("movie_id", "media_file_id", name="uq_movie_file_pair"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    movie_id = Column(Integer, ForeignKey("movies.id", ondelete="CASCADE"), nullable=False, index=True)
    media_file_id = Column(Integer, ForeignKey("media_files.id", ondelete="CASCADE"), nullable=False, index=True)
    matched_by = Column(String, nullable=False)
    confidence = Column(Float, nullable=False, default=1.0)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    movie = relationship("Movie", back_populates="movie_files")
    media_file = relationship("MediaFile", back_populates="movie_files")


class TorrentStat(Base):
    """A torrent observed in the torrent client."""
    __tablename__ = "torrent_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    media_file_id = Column(Integer, ForeignKey("media_files.id", ondelete="SET NULL"), nullable=True, index=True)
    torrent_hash = Column(String(64), nullable=False, unique=True)
    torrent_name = Column(String, nullable=True)
    tracker_domain = Column(String, nullable=True, index=True)
    ratio = Column(Float, default=0.0, nullable=False)
    seed_time_seconds = Column(BigInteger, default=0, nullable=False)
    uploaded_bytes = Column(BigInteger, default=0, nullable=False)
    downloaded_bytes = Column(BigInteger, default=0, nullable=False)
    size_bytes = Column(BigInteger, default=0, nullable=False)
    status = Column(String, default=TorrentStatus.SEEDING.value, nullable=False, index=True)
    added_at = Column(DateTime, nullable=True)
    last_activity_at = Column(DateTime, nullable=True)
    qbit_content_path = Column(String, nullable=True)
    first_seen_at = Column(DateTime, default=utcnow, nullable=False)
    last_synced_at = Column(DateTime, default=utcnow, nullable=False)

    media_file = relationship("MediaFile", back_populates="torrent_stats")
    history = relationship(
        "TorrentStatHistory",
        back_populates="torrent_stat",
        cascade="all, delete-orphan",
        order_by="TorrentStatHistory.recorded_at",
    )


class TorrentStatHistory(Base):
    """Daily snapshot of a torrent's counters."""
    __tablename__ = "torrent_stat_history"
    __table_args__ = (UniqueConstraint("torrent_stat_id", "recorded_on", name="uq_torrent_stat_day"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    torrent_stat_id = Column(Integer, ForeignKey("torrent_stats.id", ondelete="CASCADE"), nullable=False, index=True)
    ratio = Column(Float, nullable=False, default=0.0)
    uploaded_bytes = Column(BigInteger, nullable=False, default=0)
    seed_time_seconds = Column(BigInteger, nullable=False, default=0)
    recorded_on = Column(Date, nullable=False)
    recorded_at = Column(DateTime, default=utcnow, nullable=False)

    torrent_stat = relationship("TorrentStat", back_populates="history")


class TrackerRule(Base):
    """Minimum seeding obligations for one tracker domain."""
    __tablename__ = "tracker_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tracker_domain = Column(String, nullable=False, unique=True)
    min_seed_time_hours = Column(Integer, default=0, nullable=False)
    min_ratio = Column(Float, default=0.0, nullable=False)
    is_auto_detected = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class ScheduledDeletion(Base):
    """A unit of work for the deletion orchestrator."""
    __tablename__ = "scheduled_deletions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_by = Column(String, nullable=True)
    scheduled_date = Column(Date, nullable=False)
    status = Column(String, default=DeletionStatus.PENDING.value, nullable=False, index=True)
    delete_physical_files = Column(Boolean, default=True, nullable=False)
    delete_radarr_reference = Column(Boolean, default=False, nullable=False)
    delete_media_player_reference = Column(Boolean, default=False, nullable=False)
    disable_radarr_auto_search = Column(Boolean, default=False, nullable=False)
    reminder_days_before = Column(Integer, default=3, nullable=True)
    reminder_sent_at = Column(DateTime, nullable=True)
    executed_at = Column(DateTime, nullable=True)
    execution_report = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    items = relationship(
        "ScheduledDeletionItem",
        back_populates="scheduled_deletion",
        cascade="all, delete-orphan",
        order_by="ScheduledDeletionItem.id",
    )


class ScheduledDeletionItem(Base):
    """One catalogue entry and the files to retire for it."""
    __tablename__ = "scheduled_deletion_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    scheduled_deletion_id = Column(
        Integer, ForeignKey("scheduled_deletions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    movie_id = Column(Integer, ForeignKey("movies.id", ondelete="SET NULL"), nullable=True)
    media_file_ids = Column(JSON, default=list, nullable=False)
    status = Column(String, default=ItemStatus.PENDING.value, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    scheduled_deletion = relationship("ScheduledDeletion", back_populates="items")
    movie = relationship("Movie")


class ActivityLog(Base):
    """Append-only audit trail."""
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user = Column(String, nullable=True)
    action = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False)
    entity_id = Column(Integer, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Setting(Base):
    """Free-form key/value row."""
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    setting_key = Column(String, nullable=False, unique=True)
    setting_value = Column(Text, nullable=True)
    setting_type = Column(String, default="string", nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Setting {self.setting_key}={self.setting_value!r}>"
