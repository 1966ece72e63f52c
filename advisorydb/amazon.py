"""Advisories from the Amazon Linux Security Center."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from .db import Config, DatabaseError
from .storage import Transaction
from .types import Advisory, DataSource, Severity, SourceID, VulnerabilityDetail
from .utils import construct_version, walk_files

logger = logging.getLogger(__name__)

_AMAZON_DIR = "amazon"
_PLATFORM_FORMAT = "amazon linux {}"
_TARGET_VERSIONS = ("1", "2", "2022", "2023")

SOURCE = DataSource(
    id="amazon",
    name="Amazon Linux Security Center",
    url="https://alas.aws.amazon.com/",
)

_SEVERITIES = {
    "low": Severity.LOW,
    "medium": Severity.MEDIUM,
    "important": Severity.HIGH,
    "critical": Severity.CRITICAL,
}


@dataclass
class _Package:
    name: str = ""
    epoch: str = ""
    version: str = ""
    release: str = ""
    arch: str = ""


@dataclass
class _Alas:
    id: str = ""
    title: str = ""
    severity: str = ""
    description: str = ""
    packages: list[_Package] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    cve_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> _Alas:
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        packages = [
            _Package(
                name=pkg.get("name") or "",
                epoch=pkg.get("epoch") or "",
                version=pkg.get("version") or "",
                release=pkg.get("release") or "",
                arch=pkg.get("arch") or "",
            )
            for pkg in data.get("packages") or []
        ]
        return cls(
            id=data.get("id") or "",
            title=data.get("title") or "",
            severity=data.get("severity") or "",
            description=data.get("description") or "",
            packages=packages,
            references=[ref.get("href") or "" for ref in data.get("references") or []],
            cve_ids=list(data.get("cveids") or []),
        )


def _severity_from_priority(priority: str) -> Severity:
    return _SEVERITIES.get(priority, Severity.UNKNOWN)


class VulnSrc:
    """Reads Amazon Linux security advisories and stores them."""

    def __init__(self, dbc: Config | None = None) -> None:
        self._dbc = dbc if dbc is not None else Config()

    def name(self) -> SourceID:
        return SOURCE.id

    def update(self, dir: str) -> None:
        root = os.path.join(dir, "vuln-list", _AMAZON_DIR)
        advisories: dict[str, list[_Alas]] = {}
        try:
            for path, handle in walk_files(root):
                parts = path.split(os.sep)
                if len(parts) < 2:
                    continue
                version = parts[-2]
                if version not in _TARGET_VERSIONS:
                    logger.info("unsupported Amazon version: %s", version)
                    continue
                try:
                    alas = _Alas.from_dict(json.load(handle))
                except (ValueError, AttributeError) as exc:
                    raise ValueError(f"failed to decode Amazon JSON: {exc}") from exc
                advisories.setdefault(version, []).append(alas)
        except ValueError as exc:
            raise ValueError(f"error in Amazon walk: {exc}") from exc

        logger.info("Saving Amazon DB")
        try:
            self._dbc.batch_update(lambda tx: self._commit(tx, advisories))
        except DatabaseError as exc:
            raise DatabaseError(f"error in Amazon save: {exc}") from exc

    def _commit(self, tx: Transaction, advisories: dict[str, list[_Alas]]) -> None:
        for major_version, alas_list in advisories.items():
            platform = _PLATFORM_FORMAT.format(major_version)
            self._dbc.put_data_source(tx, platform, SOURCE)
            for alas in alas_list:
                for cve_id in alas.cve_ids:
                    for pkg in alas.packages:
                        advisory = Advisory(
                            fixed_version=construct_version(pkg.epoch, pkg.version, pkg.release)
                        )
                        self._dbc.put_advisory_detail(tx, cve_id, pkg.name, [platform], advisory)
                        vuln = VulnerabilityDetail(
                            severity=_severity_from_priority(alas.severity),
                            references=list(alas.references),
                            description=alas.description,
                        )
                        self._dbc.put_vulnerability_detail(tx, cve_id, SOURCE.id, vuln)
                        self._dbc.put_vulnerability_id(tx, cve_id)

    def get(self, version: str, pkg_name: str) -> list[Advisory]:
        """Advisories for *pkg_name* in Amazon Linux *version*."""
        try:
            return self._dbc.get_advisories(_PLATFORM_FORMAT.format(version), pkg_name)
        except DatabaseError as exc:
            raise DatabaseError(f"failed to get Amazon advisories: {exc}") from exc