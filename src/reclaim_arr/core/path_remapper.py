"""Translate paths reported by external systems onto local volumes."""

import posixpath
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

from reclaim_arr.core.models import RootFolderMapping
from reclaim_arr.db.models import Volume

T = TypeVar("T")


def normalize(path: str) -> str:
    """Collapse duplicate separators and strip the trailing slash."""
    if not path:
        return ""
    normalized = posixpath.normpath(path)
    return "" if normalized == "." else normalized.rstrip("/") or "/"


def build_mappings(root_folders: Iterable[str], volumes: Iterable[Volume]) -> List[RootFolderMapping]:
    """
    Pair every external root folder with the volumes it overlaps.

    A root equal to or inside a volume host path maps with the remaining
    subpath; a volume whose host path sits inside the root maps the volume
    host path itself.
    """
    volumes = list(volumes)
    mappings = []

    for root_folder in root_folders:
        root = normalize(root_folder)
        if not root:
            continue

        for volume in volumes:
            host = normalize(volume.host_path or volume.path or "")
            if not host:
                continue

            if root == host or root.startswith(host + "/"):
                mappings.append(RootFolderMapping(
                    external_root=root,
                    volume=volume,
                    volume_subpath=root[len(host):].strip("/"),
                ))
            elif host.startswith(root + "/"):
                mappings.append(RootFolderMapping(external_root=host, volume=volume))

    return mappings


def _candidates(path: str, mappings: Iterable[RootFolderMapping]) -> Iterable[Tuple[Volume, str]]:
    normalized = normalize(path)
    for mapping in mappings:
        prefix = mapping.external_root.rstrip("/") + "/"
        if not normalized.startswith(prefix):
            continue

        remainder = normalized[len(prefix):]
        if not remainder:
            continue

        if mapping.volume_subpath:
            yield mapping.volume, f"{mapping.volume_subpath}/{remainder}"
        else:
            yield mapping.volume, remainder


def resolve(path: str, mappings: Iterable[RootFolderMapping]) -> Optional[Tuple[Volume, str]]:
    """Return (volume, relative path) for the first mapping covering the path."""
    for candidate in _candidates(path, mappings):
        return candidate
    return None


def remap(
    path: str,
    mappings: Iterable[RootFolderMapping],
    lookup: Callable[[Volume, str], Optional[T]],
) -> Optional[T]:
    """Return the first entity ``lookup`` finds for any mapping covering the path."""
    for volume, relative_path in _candidates(path, mappings):
        found = lookup(volume, relative_path)
        if found is not None:
            return found
    return None
