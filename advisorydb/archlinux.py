"""Advisories from the Arch Linux security tracker."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

from .db import Config, DatabaseError
from .storage import Transaction
from .types import Advisory, DataSource, Severity, SourceID, VulnerabilityDetail, new_severity
from .utils import walk_files

_ARCH_LINUX_DIR = "arch-linux"
_PLATFORM_NAME = "archlinux"

SOURCE = DataSource(
    id="arch-linux",
    name="Arch Linux Vulnerable issues",
    url="https://security.archlinux.org/",
)


@dataclass
class _VulnGroup:
    name: str = ""
    packages: list[str] = field(default_factory=list)
    severity: str = ""
    affected: str = ""
    fixed: str = ""
    issues: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> _VulnGroup:
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        return cls(
            name=data.get("name") or "",
            packages=list(data.get("packages") or []),
            severity=data.get("severity") or "",
            affected=data.get("affected") or "",
            fixed=data.get("fixed") or "",
            issues=list(data.get("issues") or []),
        )


def _convert_severity(severity: str) -> Severity:
    try:
        return new_severity(severity.upper())
    except ValueError:
        return Severity.UNKNOWN


class VulnSrc:
    """Reads Arch Linux vulnerability groups and stores their advisories."""

    def __init__(self, dbc: Config | None = None) -> None:
        self._dbc = dbc if dbc is not None else Config()

    def name(self) -> SourceID:
        return SOURCE.id

    def update(self, dir: str) -> None:
        root = os.path.join(dir, "vuln-list", _ARCH_LINUX_DIR)
        groups = []
        try:
            for path, handle in walk_files(root):
                try:
                    groups.append(_VulnGroup.from_dict(json.load(handle)))
                except ValueError as exc:
                    raise ValueError(f"failed to decode arch linux json ({path}): {exc}") from exc
        except ValueError as exc:
            raise ValueError(f"error in arch linux walk: {exc}") from exc

        try:
            self._save(groups)
        except DatabaseError as exc:
            raise DatabaseError(f"error in arch linux save: {exc}") from exc

    def _save(self, groups: list[_VulnGroup]) -> None:
        def commit(tx: Transaction) -> None:
            self._dbc.put_data_source(tx, _PLATFORM_NAME, SOURCE)
            self._commit(tx, groups)

        self._dbc.batch_update(commit)

    def _commit(self, tx: Transaction, groups: list[_VulnGroup]) -> None:
        for group in groups:
            for cve_id in group.issues:
                advisory = Advisory(fixed_version=group.fixed, affected_version=group.affected)
                for pkg in group.packages:
                    self._dbc.put_advisory_detail(tx, cve_id, pkg, [_PLATFORM_NAME], advisory)
                    vuln = VulnerabilityDetail(severity=_convert_severity(group.severity))
                    self._dbc.put_vulnerability_detail(tx, cve_id, SOURCE.id, vuln)
                    self._dbc.put_vulnerability_id(tx, cve_id)

    def get(self, pkg_name: str) -> list[Advisory]:
        try:
            return self._dbc.get_advisories(_PLATFORM_NAME, pkg_name)
        except DatabaseError as exc:
            raise DatabaseError(f"failed to get Arch Linux advisories: {exc}") from exc