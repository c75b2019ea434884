"""Configuration management for reclaim-arr."""

from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientPathMapping(BaseModel):
    """Prefix pair translating a torrent-client path to a host path."""

    client: str
    host: str


class QBittorrentConfig(BaseSettings):
    """qBittorrent connection settings."""

    host: str = Field(default="", description="qBittorrent host (empty disables the client)")
    port: int = Field(default=8080, description="qBittorrent port")
    username: str = Field(default="admin", description="qBittorrent username")
    password: str = Field(default="", description="qBittorrent password")
    timeout: int = Field(default=30, description="Request timeout in seconds")
    path_mappings: List[ClientPathMapping] = Field(
        default_factory=list,
        description="Client path prefix -> host path prefix pairs",
    )

    @property
    def url(self) -> str:
        """Get the full URL for qBittorrent."""
        return f"http://{self.host}:{self.port}"

    @property
    def is_configured(self) -> bool:
        return bool(self.host)

    model_config = SettingsConfigDict(env_prefix="QBIT_")


class TmdbConfig(BaseSettings):
    """TMDB search settings."""

    api_key: str = Field(default="", description="TMDB API key")
    base_url: str = Field(default="https://api.themoviedb.org/3", description="TMDB API base URL")
    language: str = Field(default="en-US", description="Language for titles and synopses")
    timeout: int = Field(default=10, description="Request timeout in seconds")

    model_config = SettingsConfigDict(env_prefix="TMDB_")


class WatcherConfig(BaseSettings):
    """Settings for the out-of-process watcher agent."""

    url: str = Field(default="http://localhost:8081", description="Watcher internal endpoint")
    auth_token: str = Field(default="", description="Token sent as X-Internal-Token")
    timeout: int = Field(default=5, description="Request timeout in seconds")

    model_config = SettingsConfigDict(env_prefix="WATCHER_")


class PathsConfig(BaseSettings):
    """File system path settings."""

    # Path mapping for Docker containers
    # If Radarr reports paths differently than the host sees them
    remote_path_base: str = Field(
        default="",
        description="Base path as reported by Radarr"
    )
    local_path_base: str = Field(
        default="",
        description="Host path where the same files are located"
    )

    def remap_path(self, remote_path: str) -> str:
        """
        Remap a path reported by Radarr to the host-visible path.

        Example: /movies/Heat (1995)/Heat.mkv -> /mnt/data/movies/Heat (1995)/Heat.mkv
        """
        if self.remote_path_base and remote_path.startswith(self.remote_path_base):
            return remote_path.replace(self.remote_path_base, self.local_path_base, 1)
        return remote_path

    model_config = SettingsConfigDict(env_prefix="PATH_")


class DatabaseConfig(BaseSettings):
    """Database settings."""

    url: str = Field(default="sqlite:///reclaim-arr.db", description="SQLAlchemy database URL")
    echo: bool = Field(default=False, description="Log every SQL statement")

    model_config = SettingsConfigDict(env_prefix="DB_")


class SyncConfig(BaseSettings):
    """Tunables for the matcher and the torrent reconciler."""

    stale_after_minutes: int = Field(default=90, description="Torrents unseen for longer are marked removed")
    match_batch_size: int = Field(default=50, description="Files processed between matcher commits")
    history_retention_days: int = Field(default=90, description="Snapshot retention for clean-history")

    model_config = SettingsConfigDict(env_prefix="SYNC_")


class LoggingConfig(BaseSettings):
    """Logging settings."""

    level: str = Field(default="INFO", description="Root log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="logging format string",
    )

    model_config = SettingsConfigDict(env_prefix="LOG_")


class Config(BaseSettings):
    """Main configuration class."""

    qbittorrent: QBittorrentConfig = Field(default_factory=QBittorrentConfig)
    tmdb: TmdbConfig = Field(default_factory=TmdbConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False
    )

    @classmethod
    def load_from_yaml(cls, yaml_path: Path) -> "Config":
        """Load configuration from YAML file."""
        import yaml

        if not yaml_path.exists():
            return cls()

        with open(yaml_path, 'r') as f:
            data = yaml.safe_load(f)

        return cls(**data if data else {})

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from file or environment."""
        if config_path and config_path.exists():
            return cls.load_from_yaml(config_path)

        default_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path.home() / ".reclaim-arr" / "config.yaml",
            Path("/etc/reclaim-arr/config.yaml"),
        ]

        for path in default_paths:
            if path.exists():
                return cls.load_from_yaml(path)

        # Fall back to environment variables
        return cls()


def get_config(config_path: Optional[Path] = None) -> Config:
    """Get the configuration instance."""
    return Config.load(config_path)
