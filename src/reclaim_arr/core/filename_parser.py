"""
Parse release-style media file names.

Handles the usual layouts:
    Title.Year.Resolution.Quality.Codec-Group.ext
    Title (Year) Resolution Quality Codec-Group.ext

Example: "Inception.2010.2160p.BluRay.x265-GROUP.mkv"
"""

import re
from pathlib import PurePosixPath
from typing import Optional, Sequence

from reclaim_arr.core.models import ParsedName

# Order matters: the first hit wins
RESOLUTIONS = ("2160p", "1080p", "720p", "480p", "4K", "UHD")
QUALITIES = (
    "BluRay", "Bluray", "BDRip", "BRRip", "WEB-DL", "WEBRip", "WEB",
    "HDTV", "DVDRip", "Remux", "PROPER", "REPACK",
)
CODECS = (
    "x264", "x265", "H.264", "H264", "H.265", "H265",
    "HEVC", "AVC", "AV1", "VP9", "MPEG-2", "XviD", "DivX",
)

YEAR_PATTERN = re.compile(r"[.\s(]?((?:19|20)\d{2})[.\s)]?")


def _find_first(haystack: str, needles: Sequence[str]) -> Optional[str]:
    lowered = haystack.lower()
    for needle in needles:
        if needle.lower() in lowered:
            return needle
    return None


def _strip_extension(file_name: str) -> str:
    path = PurePosixPath(file_name)
    return path.stem if path.suffix else path.name


def parse(file_name: str) -> ParsedName:
    """Extract title, year, resolution, quality and codec from a file name."""
    name = _strip_extension(file_name)

    year = None
    title = None
    year_match = YEAR_PATTERN.search(name)
    if year_match:
        year = int(year_match.group(1))
        head = re.split(r"[.\s(]?" + year_match.group(1), name, maxsplit=1)[0]
        title = re.sub(r"\s+", " ", head.strip().replace(".", " ").replace("_", " ")).strip()

    return ParsedName(
        title=title or None,
        year=year,
        resolution=_find_first(name, RESOLUTIONS),
        quality=_find_first(name, QUALITIES),
        codec=_find_first(name, CODECS),
    )


def confidence(parsed: ParsedName) -> float:
    """Link confidence for a filename match; 0.5 base, capped at 0.9."""
    score = 0.5
    if parsed.year is not None:
        score += 0.2
    if parsed.resolution:
        score += 0.1
    if parsed.quality:
        score += 0.05
    if parsed.codec:
        score += 0.05
    return round(min(score, 0.9), 2)
