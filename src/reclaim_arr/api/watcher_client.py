"""Client for the watcher agent running on the storage host."""

import logging
import uuid
from typing import Optional

import requests

from reclaim_arr.config import WatcherConfig

logger = logging.getLogger(__name__)


class WatcherClient:
    """Sends file commands to the watcher over its internal HTTP endpoint."""

    def __init__(self, config: WatcherConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def _send_command(self, command_type: str, data: dict) -> bool:
        try:
            resp = self.session.post(
                f"{self.config.url.rstrip('/')}/internal/commands",
                json={"type": command_type, "data": data},
                headers={"X-Internal-Token": self.config.auth_token},
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Watcher unreachable for {command_type}: {e}")
            return False

        if not resp.ok:
            logger.warning(f"Watcher refused {command_type}: HTTP {resp.status_code}")
            return False

        return True

    def request_replacement(self, deletion_id: int, source_path: str, target_path: str, volume_root: str) -> bool:
        """Ask the watcher to hardlink source_path to target_path; True when accepted."""
        logger.info(f"Requesting hardlink replacement for deletion {deletion_id}: {source_path} -> {target_path}")
        return self._send_command("command.files.hardlink", {
            "request_id": str(uuid.uuid4()),
            "deletion_id": str(deletion_id),
            "source_path": source_path,
            "target_path": target_path,
            "volume_path": volume_root,
        })
