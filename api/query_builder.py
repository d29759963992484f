"""Derive a stash-box search query from a scene's file path or metadata.

stash-box only returns a scene if every query term matches, so the query is
kept short: noise tokens are removed with a user-editable blacklist of
case-insensitive regular expressions.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from models import LocalScene

logger = logging.getLogger(__name__)


class ParseMode(str, Enum):
    AUTO = "auto"
    FILENAME = "filename"
    DIR = "dir"
    PATH = "path"
    METADATA = "metadata"


MODE_DESCRIPTIONS = {
    ParseMode.AUTO: "Uses metadata if present, or filename",
    ParseMode.METADATA: "Only uses metadata",
    ParseMode.FILENAME: "Only uses filename",
    ParseMode.DIR: "Only uses parent directory of video file",
    ParseMode.PATH: "Uses entire file path",
}

DEFAULT_BLACKLIST = [
    " XXX ",
    "1080p",
    "720p",
    "2160p",
    "KTR",
    "RARBG",
    "MP4",
    "x264",
    r"\[",
    r"\]",
]

# .YY.MM.DD. as used by most release names
_DATE_PATTERN = re.compile(r"\.(\d\d)\.(\d\d)\.(\d\d)\.")
_WINDOWS_PREFIX = re.compile(r"^([a-zA-Z]:|\\\\)")
_EXTENSION = re.compile(r"\.[a-zA-Z0-9]*$")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9 ]+")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class ParsedPath:
    """A file path split into directory segments, file name and extension."""
    dirs: list[str] = field(default_factory=list)
    file: str = ""
    ext: str = ""

    @property
    def segments(self) -> list[str]:
        return [*self.dirs, self.file] if self.file else list(self.dirs)


def parse_path(file_path: str) -> ParsedPath:
    """Split a POSIX or Windows path into its components."""
    path = file_path or ""
    if _WINDOWS_PREFIX.match(path):
        path = re.sub(r"^[a-zA-Z]:", "", path).replace("\\", "/")

    components = [c for c in path.split("/") if c.strip()]
    if not components:
        return ParsedPath()

    file_name = components[-1]
    ext_match = _EXTENSION.search(file_name)
    ext = ext_match.group(0) if ext_match else ""
    base = file_name[: -len(ext)] if ext else file_name
    return ParsedPath(dirs=components[:-1], file=base, ext=ext)


def _compile(pattern: str) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"Skipping invalid blacklist pattern {pattern!r}: {e}")
        return None


def apply_blacklist(value: str, blacklist: list[str], first_only: bool = False) -> str:
    """Remove blacklist matches, all of them or only the first per pattern."""
    for pattern in blacklist:
        regex = _compile(pattern)
        if regex is None:
            continue
        value = regex.sub("", value, count=1 if first_only else 0)
    return value


def _normalize(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def _use_metadata(scene: LocalScene, mode: ParseMode) -> bool:
    if mode == ParseMode.METADATA:
        return True
    return mode == ParseMode.AUTO and bool(scene.date) and bool(scene.studio_name)


def _metadata_query(scene: LocalScene, blacklist: list[str]) -> str:
    segments = [
        scene.date or "",
        scene.studio_name or "",
        " ".join(n for n in scene.performer_names if n),
        _NON_ALNUM.sub("", scene.title) if scene.title else "",
    ]
    query = " ".join(s for s in segments if s != "")
    return apply_blacklist(query, blacklist)


def _path_query(file_path: str, mode: ParseMode, blacklist: list[str]) -> str:
    parsed = parse_path(file_path)
    if mode == ParseMode.PATH:
        value = " ".join(parsed.segments)
    elif mode == ParseMode.DIR:
        value = parsed.dirs[-1] if parsed.dirs else ""
    else:
        value = parsed.file

    value = apply_blacklist(value, blacklist, first_only=True)
    value = value.replace("-", " ")
    date = _DATE_PATTERN.search(value)
    if date:
        yy, mm, dd = date.groups()
        value = value.replace(date.group(0), f" 20{yy}-{mm}-{dd} ", 1)
    return value.replace(".", " ")


def prepare_query_string(
    scene: LocalScene,
    mode: ParseMode | str = ParseMode.AUTO,
    blacklist: Optional[list[str]] = None,
) -> str:
    """Build the default search query for a scene.

    Args:
        scene: The local scene (path plus any existing metadata)
        mode: Which source to derive the query from
        blacklist: Regex patterns to strip; defaults to DEFAULT_BLACKLIST

    Returns:
        The query string with whitespace collapsed.
    """
    mode = ParseMode(mode)
    if blacklist is None:
        blacklist = DEFAULT_BLACKLIST

    if _use_metadata(scene, mode):
        return _normalize(_metadata_query(scene, blacklist))
    return _normalize(_path_query(scene.path, mode, blacklist))
