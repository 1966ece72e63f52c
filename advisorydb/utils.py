"""File, time and version helpers."""

from __future__ import annotations

import json
import logging
import os
import re
import stat
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO, Iterator

logger = logging.getLogger(__name__)

_APP_DIR = "advisorydb"

_RFC3339 = re.compile(
    r"([0-9]{4})-([0-9]{2})-([0-9]{2})T([0-9]{2}):([0-9]{2}):([0-9]{2})"
    r"(?:\.([0-9]+))?(Z|[+-][0-9]{2}:[0-9]{2})"
)


def _user_cache_dir() -> str:
    if sys.platform == "win32":
        directory = os.environ.get("LocalAppData", "")
        if not directory:
            raise OSError("%LocalAppData% is not defined")
        return directory
    if sys.platform == "darwin":
        home = os.environ.get("HOME", "")
        if not home:
            raise OSError("$HOME is not defined")
        return os.path.join(home, "Library", "Caches")
    directory = os.environ.get("XDG_CACHE_HOME", "")
    if directory:
        return directory
    home = os.environ.get("HOME", "")
    if not home:
        raise OSError("neither $XDG_CACHE_HOME nor $HOME are defined")
    return os.path.join(home, ".cache")


def cache_dir() -> str:
    """Default cache directory: the user cache directory, else the temp directory."""
    try:
        base = _user_cache_dir()
    except OSError:
        base = tempfile.gettempdir()
    return os.path.join(base, _APP_DIR)


def construct_version(epoch: str, version: str, release: str) -> str:
    """Build an "epoch:version-release" string, leaving out empty parts and epoch 0."""
    result = f"{epoch}:" if epoch not in ("", "0") else ""
    result += version
    if release:
        result += f"-{release}"
    return result


def _emit(path: str, size: int) -> Iterator[tuple[str, BinaryIO]]:
    if size == 0:
        logger.warning("invalid size: %s", path)
        return
    with open(path, "rb") as handle:
        yield path, handle


def _walk_dir(path: str) -> Iterator[tuple[str, BinaryIO]]:
    with os.scandir(path) as scanner:
        entries = sorted(scanner, key=lambda entry: entry.name)
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            yield from _walk_dir(entry.path)
        else:
            yield from _emit(entry.path, entry.stat(follow_symlinks=False).st_size)


def walk_files(root: str | os.PathLike[str]) -> Iterator[tuple[str, BinaryIO]]:
    """Yield (path, open binary file) for each non-empty file under *root*, in lexical order.

    Each file is closed when the next one is requested.
    """
    root = os.fspath(root)
    info = os.lstat(root)
    if stat.S_ISDIR(info.st_mode):
        yield from _walk_dir(root)
    else:
        yield from _emit(root, info.st_size)


def exists(path: str | os.PathLike[str]) -> bool:
    """True if *path* exists; other stat errors are raised."""
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    return True


def load_json_file(path: str | os.PathLike[str]) -> Any:
    """Decode the first JSON value in the file at *path*."""
    with open(path, encoding="utf-8") as handle:
        text = handle.read()
    start = len(text) - len(text.lstrip())
    try:
        value, _ = json.JSONDecoder().raw_decode(text, start)
    except json.JSONDecodeError as exc:
        raise ValueError(f"failed to decode file ({os.fspath(path)}): {exc}") from exc
    return value


def parse_time(value: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime."""
    match = _RFC3339.fullmatch(value)
    if match is None:
        raise ValueError(f"cannot parse {value!r} as an RFC 3339 time")
    year, month, day, hour, minute, second = (int(part) for part in match.groups()[:6])
    micro = int((match.group(7) or "")[:6].ljust(6, "0"))
    zone = match.group(8)
    try:
        if zone == "Z":
            tz = timezone.utc
        else:
            sign = 1 if zone[0] == "+" else -1
            tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
        return datetime(year, month, day, hour, minute, second, micro, tzinfo=tz)
    except ValueError as exc:
        raise ValueError(f"cannot parse {value!r} as an RFC 3339 time: {exc}") from exc