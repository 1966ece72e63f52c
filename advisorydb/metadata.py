"""The metadata file stored next to the database."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .db import db_dir
from .types import _format_time
from .utils import parse_time

_METADATA_FILE = "metadata.json"

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


@dataclass
class Metadata:
    """Schema version and update times of a database build."""

    version: int = 0
    next_update: datetime = _ZERO_TIME
    updated_at: datetime = _ZERO_TIME
    # Filled in after downloading.
    downloaded_at: datetime = _ZERO_TIME


def _to_dict(meta: Metadata) -> dict[str, Any]:
    result: dict[str, Any] = {}
    if meta.version:
        result["Version"] = meta.version
    result["NextUpdate"] = _format_time(meta.next_update)
    result["UpdatedAt"] = _format_time(meta.updated_at)
    result["DownloadedAt"] = _format_time(meta.downloaded_at)
    return result


def _time_field(data: dict[str, Any], key: str) -> datetime:
    value = data.get(key)
    if value is None:
        return _ZERO_TIME
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return parse_time(value)


def _from_dict(data: Any) -> Metadata:
    if not isinstance(data, dict):
        raise ValueError("metadata must be a JSON object")
    version = data.get("Version") or 0
    if not isinstance(version, int) or isinstance(version, bool):
        raise ValueError("Version must be an integer")
    return Metadata(
        version=version,
        next_update=_time_field(data, "NextUpdate"),
        updated_at=_time_field(data, "UpdatedAt"),
        downloaded_at=_time_field(data, "DownloadedAt"),
    )


def metadata_path(cache_dir: str) -> str:
    """Path of the metadata file under *cache_dir*."""
    return os.path.join(db_dir(cache_dir), _METADATA_FILE)


class Client:
    """Reads and writes the metadata file of one cache directory."""

    def __init__(self, cache_dir: str) -> None:
        self.file_path = metadata_path(cache_dir)

    def get(self) -> Metadata:
        """Read the metadata; OSError if the file is missing, ValueError if it is invalid."""
        with open(self.file_path, encoding="utf-8") as handle:
            text = handle.read()
        try:
            value, _ = json.JSONDecoder().raw_decode(text, len(text) - len(text.lstrip()))
            return _from_dict(value)
        except ValueError as exc:
            raise ValueError(f"unable to decode metadata: {exc}") from exc

    def update(self, meta: Metadata) -> None:
        """Write *meta*, creating the directory when needed."""
        os.makedirs(os.path.dirname(self.file_path), mode=0o744, exist_ok=True)
        with open(self.file_path, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(_to_dict(meta), separators=(",", ":")) + "\n")

    def delete(self) -> None:
        """Remove the metadata file; OSError if it cannot be removed."""
        os.remove(self.file_path)