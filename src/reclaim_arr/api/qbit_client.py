"""qBittorrent API client wrapper."""

from typing import List, Optional
import logging

from qbittorrentapi import Client as QBitClient
from qbittorrentapi.exceptions import APIConnectionError

from reclaim_arr.core.models import TorrentInfo, TorrentFile
from reclaim_arr.config import QBittorrentConfig
from reclaim_arr.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class QBittorrentClient:
    """Client for interacting with qBittorrent API."""

    def __init__(self, config: QBittorrentConfig):
        """Initialize qBittorrent client."""
        self.config = config
        self._client: Optional[QBitClient] = None

    def is_configured(self) -> bool:
        return self.config.is_configured

    def connect(self) -> None:
        """Establish connection to qBittorrent."""
        try:
            self._client = QBitClient(
                host=self.config.host,
                port=self.config.port,
                username=self.config.username,
                password=self.config.password,
                REQUESTS_ARGS={"timeout": self.config.timeout},
            )
            self._client.auth_log_in()
            logger.info(f"Connected to qBittorrent at {self.config.url}")
        except APIConnectionError as e:
            logger.error(f"Failed to connect to qBittorrent: {e}")
            raise ExternalServiceError("qbittorrent", f"cannot reach {self.config.url}", e) from e
        except Exception as e:
            logger.error(f"Failed to connect to qBittorrent: {e}")
            raise ExternalServiceError("qbittorrent", str(e), e) from e

    def disconnect(self) -> None:
        """Disconnect from qBittorrent."""
        if self._client:
            self._client.auth_log_out()
            logger.info("Disconnected from qBittorrent")

    def _tracker_for(self, torrent) -> Optional[str]:
        if torrent.get("tracker"):
            return torrent["tracker"]

        # Fall back to the first non-DHT/PeX entry
        try:
            trackers = self._client.torrents_trackers(torrent_hash=torrent["hash"])
        except Exception as e:
            logger.debug(f"Tracker lookup failed for {torrent['hash']}: {e}")
            return None
        for t in trackers or []:
            if t.url and not t.url.startswith("**"):
                return t.url
        return None

    def list_torrents(self) -> List[TorrentInfo]:
        """Get all torrents from qBittorrent."""
        if not self._client:
            self.connect()

        try:
            torrents = self._client.torrents_info()
            torrent_list = [
                TorrentInfo(
                    hash=torrent["hash"] or "",
                    name=torrent.get("name", ""),
                    tracker=self._tracker_for(torrent),
                    ratio=torrent.get("ratio", 0.0),
                    seeding_time=torrent.get("seeding_time", 0),
                    uploaded=torrent.get("uploaded", 0),
                    downloaded=torrent.get("downloaded", 0),
                    size=torrent.get("size", 0),
                    state=torrent.get("state", ""),
                    content_path=torrent.get("content_path"),
                    added_on=torrent.get("added_on"),
                    last_activity=torrent.get("last_activity"),
                )
                for torrent in torrents
            ]

            logger.info(f"Retrieved {len(torrent_list)} torrents from qBittorrent")
            return torrent_list

        except Exception as e:
            logger.error(f"Failed to get torrents: {e}")
            raise ExternalServiceError("qbittorrent", f"listing torrents failed: {e}", e) from e

    def list_files(self, torrent_hash: str) -> List[TorrentFile]:
        """Files of one torrent, with sizes."""
        if not self._client:
            self.connect()

        try:
            files = self._client.torrents_files(torrent_hash=torrent_hash)
            return [TorrentFile(name=f.name, size=f.size) for f in files]
        except Exception as e:
            logger.error(f"Failed to get files for torrent {torrent_hash}: {e}")
            raise ExternalServiceError("qbittorrent", f"listing files of {torrent_hash} failed: {e}", e) from e

    def map_client_path_to_host(self, path: str) -> str:
        """
        Translate a path as qBittorrent sees it to the host path.

        Example: /downloads/movies/Heat (1995) -> /mnt/data/torrents/movies/Heat (1995)
        """
        for mapping in self.config.path_mappings:
            prefix = mapping.client.rstrip("/")
            if path == prefix or path.startswith(prefix + "/"):
                return mapping.host.rstrip("/") + path[len(prefix):]
        return path
