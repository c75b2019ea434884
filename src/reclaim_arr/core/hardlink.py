"""Choose and request hardlink replacements for media-player files."""

from pathlib import PurePosixPath
from typing import Iterable, List, Optional
import logging

from reclaim_arr.api.watcher_client import WatcherClient
from reclaim_arr.core.models import ReplacementSuggestion
from reclaim_arr.db.models import MediaFile, Movie

logger = logging.getLogger(__name__)

RESOLUTION_SCORES = {"2160p": 4, "4k": 4, "1080p": 3, "720p": 2, "480p": 1}
QUALITY_SCORES = {
    "remux": 5,
    "bluray": 4,
    "blu-ray": 4,
    "web-dl": 3,
    "webdl": 3,
    "webrip": 2,
    "web-rip": 2,
    "hdtv": 1,
}


def resolution_score(resolution: Optional[str]) -> int:
    return RESOLUTION_SCORES.get((resolution or "").lower(), 0)


def quality_score(quality: Optional[str]) -> int:
    return QUALITY_SCORES.get((quality or "").lower(), 0)


def rank_candidates(files: Iterable[MediaFile]) -> List[MediaFile]:
    """Best resolution first, then best quality, then smallest file."""
    return sorted(
        files,
        key=lambda f: (-resolution_score(f.resolution), -quality_score(f.quality), f.file_size_bytes or 0),
    )


def build_target_path(current: MediaFile, replacement: MediaFile) -> str:
    """
    Where the replacement hardlink goes.

    Same directory as the file the media player serves, named after the
    replacement file, rooted at the served file's volume.
    """
    root = current.volume.root
    new_name = replacement.file_name or PurePosixPath(replacement.file_path).name
    directory = current.directory

    if not directory:
        return f"{root}/{new_name}"
    return f"{root}/{directory}/{new_name}"


class HardlinkReplacementSelector:
    """Ranks replacement candidates and asks the watcher to relink them."""

    def __init__(self, watcher: WatcherClient):
        self.watcher = watcher

    def suggest_replacement(self, movie: Movie, exclude_ids: Iterable[int] = ()) -> ReplacementSuggestion:
        excluded = set(exclude_ids)
        candidates = [f for f in movie.media_files if f.id not in excluded]

        ranked = rank_candidates(candidates)
        if not ranked:
            return ReplacementSuggestion()
        return ReplacementSuggestion(suggested=ranked[0], alternatives=ranked[1:])

    def request_replacement(self, deletion_id: int, current: MediaFile, replacement: MediaFile) -> bool:
        """Send the relink request; False when the watcher did not accept it."""
        source_path = replacement.absolute_path
        target_path = build_target_path(current, replacement)

        accepted = self.watcher.request_replacement(deletion_id, source_path, target_path, current.volume.root)
        if not accepted:
            logger.warning(f"Watcher did not accept replacement for deletion {deletion_id}: {target_path}")
        return accepted
