"""Advisories from the Alpine security database."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

from .db import Config, DatabaseError
from .storage import Transaction
from .types import Advisory, Advisory as _Advisory, DataSource, SourceID
from .utils import walk_files

_ALPINE_DIR = "alpine"
_PLATFORM_FORMAT = "alpine {}"

SOURCE = DataSource(id="alpine", name="Alpine Secdb", url="https://secdb.alpinelinux.org/")


@dataclass
class _SecDbEntry:
    pkg_name: str = ""
    distroversion: str = ""
    secfixes: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> _SecDbEntry:
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        secfixes = data.get("secfixes") or {}
        if not isinstance(secfixes, dict):
            raise ValueError("secfixes must be an object")
        return cls(
            pkg_name=data.get("name") or "",
            distroversion=data.get("distroversion") or "",
            secfixes={version: list(ids or []) for version, ids in secfixes.items()},
        )


class VulnSrc:
    """Reads Alpine secdb files and stores their advisories."""

    def __init__(self, dbc: Config | None = None) -> None:
        self._dbc = dbc if dbc is not None else Config()

    def name(self) -> SourceID:
        return SOURCE.id

    def update(self, dir: str) -> None:
        root = os.path.join(dir, "vuln-list", _ALPINE_DIR)
        entries = []
        try:
            for _, handle in walk_files(root):
                try:
                    entries.append(_SecDbEntry.from_dict(json.load(handle)))
                except ValueError as exc:
                    raise ValueError(f"failed to decode Alpine advisory: {exc}") from exc
        except ValueError as exc:
            raise ValueError(f"error in Alpine walk: {exc}") from exc

        try:
            self._save(entries)
        except DatabaseError as exc:
            raise DatabaseError(f"error in Alpine save: {exc}") from exc

    def _save(self, entries: list[_SecDbEntry]) -> None:
        def commit(tx: Transaction) -> None:
            for entry in entries:
                platform = _PLATFORM_FORMAT.format(entry.distroversion.removeprefix("v"))
                self._dbc.put_data_source(tx, platform, SOURCE)
                self._save_sec_fixes(tx, platform, entry.pkg_name, entry.secfixes)

        self._dbc.batch_update(commit)

    def _save_sec_fixes(
        self, tx: Transaction, platform: str, pkg_name: str, secfixes: dict[str, list[str]]
    ) -> None:
        for fixed_version, vuln_ids in secfixes.items():
            advisory = _Advisory(fixed_version=fixed_version)
            for vuln_id in vuln_ids:
                # Entries may carry remarks, e.g. "CVE-2017-2616 (+ regression fix)".
                for cve_id in vuln_id.split():
                    cve_id = cve_id.replace("CVE_", "CVE-")
                    if not cve_id.startswith("CVE-"):
                        continue
                    self._dbc.put_advisory_detail(tx, cve_id, pkg_name, [platform], advisory)
                    self._dbc.put_vulnerability_id(tx, cve_id)

    def get(self, release: str, pkg_name: str) -> list[Advisory]:
        try:
            return self._dbc.get_advisories(_PLATFORM_FORMAT.format(release), pkg_name)
        except DatabaseError as exc:
            raise DatabaseError(f"failed to get Alpine advisories: {exc}") from exc