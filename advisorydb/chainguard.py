"""Advisories from the Chainguard security data."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

from .db import Config, DatabaseError
from .storage import Transaction
from .types import Advisory, DataSource, SourceID
from .utils import walk_files

_CHAINGUARD_DIR = "chainguard"
_DISTRO_NAME = "chainguard"

SOURCE = DataSource(
    id="chainguard",
    name="Chainguard Security Data",
    url="https://packages.cgr.dev/chainguard/security.json",
)


@dataclass
class _SecDbEntry:
    pkg_name: str = ""
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
            secfixes={version: list(ids or []) for version, ids in secfixes.items()},
        )


class VulnSrc:
    """Reads Chainguard security files and stores their advisories."""

    def __init__(self, dbc: Config | None = None) -> None:
        self._dbc = dbc if dbc is not None else Config()

    def name(self) -> SourceID:
        return SOURCE.id

    def update(self, dir: str) -> None:
        root = os.path.join(dir, "vuln-list", _CHAINGUARD_DIR)
        entries = []
        try:
            for _, handle in walk_files(root):
                try:
                    entries.append(_SecDbEntry.from_dict(json.load(handle)))
                except ValueError as exc:
                    raise ValueError(f"failed to decode Chainguard advisory: {exc}") from exc
        except ValueError as exc:
            raise ValueError(f"error in Chainguard walk: {exc}") from exc

        try:
            self._save(entries)
        except DatabaseError as exc:
            raise DatabaseError(f"error in Chainguard save: {exc}") from exc

    def _save(self, entries: list[_SecDbEntry]) -> None:
        def commit(tx: Transaction) -> None:
            for entry in entries:
                self._dbc.put_data_source(tx, _DISTRO_NAME, SOURCE)
                self._save_sec_fixes(tx, _DISTRO_NAME, entry.pkg_name, entry.secfixes)

        self._dbc.batch_update(commit)

    def _save_sec_fixes(
        self, tx: Transaction, platform: str, pkg_name: str, secfixes: dict[str, list[str]]
    ) -> None:
        for fixed_version, vuln_ids in secfixes.items():
            advisory = Advisory(fixed_version=fixed_version)
            for vuln_id in vuln_ids:
                if not vuln_id.startswith("CVE-"):
                    continue
                self._dbc.put_advisory_detail(tx, vuln_id, pkg_name, [platform], advisory)
                self._dbc.put_vulnerability_id(tx, vuln_id)

    def get(self, release: str, pkg_name: str) -> list[Advisory]:
        """Advisories for *pkg_name*; *release* is ignored since there is one stream."""
        try:
            return self._dbc.get_advisories(_DISTRO_NAME, pkg_name)
        except DatabaseError as exc:
            raise DatabaseError(f"failed to get Chainguard advisories: {exc}") from exc