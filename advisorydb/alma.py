"""Advisories from the AlmaLinux product errata."""

from __future__ import annotations

import json
import os
import string
from dataclasses import dataclass, field
from typing import Any

from .db import Config, DatabaseError
from .storage import Transaction
from .types import Advisory, DataSource, Severity, SourceID, VulnerabilityDetail
from .utils import construct_version, walk_files

_ALMA_DIR = "alma"
_PLATFORM_FORMAT = "alma {}"
_ARCHES = ("noarch", "x86_64")

SOURCE = DataSource(
    id="alma",
    name="AlmaLinux Product Errata",
    url="https://errata.almalinux.org/",
)

_SEVERITIES = {
    "low": Severity.LOW,
    "moderate": Severity.MEDIUM,
    "important": Severity.HIGH,
    "critical": Severity.CRITICAL,
}

_DIGITS = frozenset(string.digits)
_ALNUM = frozenset(string.ascii_letters + string.digits)


def _take(text: str, start: int, chars: frozenset[str]) -> str:
    end = start
    while end < len(text) and text[end] in chars:
        end += 1
    return text[start:end]


def _rpmvercmp(a: str, b: str) -> int:
    if a == b:
        return 0
    i = j = 0
    while i < len(a) or j < len(b):
        while i < len(a) and a[i] not in _ALNUM and a[i] != "~":
            i += 1
        while j < len(b) and b[j] not in _ALNUM and b[j] != "~":
            j += 1

        a_tilde = i < len(a) and a[i] == "~"
        b_tilde = j < len(b) and b[j] == "~"
        if a_tilde or b_tilde:
            if not a_tilde:
                return 1
            if not b_tilde:
                return -1
            i += 1
            j += 1
            continue

        if i >= len(a) or j >= len(b):
            break

        numeric = a[i] in _DIGITS
        chars = _DIGITS if numeric else frozenset(string.ascii_letters)
        seg1 = _take(a, i, chars)
        seg2 = _take(b, j, chars)
        i += len(seg1)
        j += len(seg2)

        if not seg2:
            return 1 if numeric else -1

        if numeric:
            seg1 = seg1.lstrip("0")
            seg2 = seg2.lstrip("0")
            if len(seg1) != len(seg2):
                return 1 if len(seg1) > len(seg2) else -1
        if seg1 != seg2:
            return 1 if seg1 > seg2 else -1

    if i >= len(a) and j >= len(b):
        return 0
    return 1 if i < len(a) else -1


def _split_rpm_version(value: str) -> tuple[int, str, str]:
    epoch = 0
    if ":" in value:
        head, value = value.split(":", 1)
        try:
            epoch = int(head)
        except ValueError:
            epoch = 0
    version, sep, release = value.rpartition("-")
    if not sep:
        return epoch, value, ""
    return epoch, version, release


def compare_rpm_versions(v1: str, v2: str) -> int:
    """Compare two "epoch:version-release" strings the way rpm does; return -1, 0 or 1."""
    epoch1, version1, release1 = _split_rpm_version(v1)
    epoch2, version2, release2 = _split_rpm_version(v2)
    if epoch1 != epoch2:
        return 1 if epoch1 > epoch2 else -1
    result = _rpmvercmp(version1, version2)
    if result:
        return result
    return _rpmvercmp(release1, release2)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass
class _Reference:
    href: str = ""
    type: str = ""
    id: str = ""


@dataclass
class _Package:
    name: str = ""
    version: str = ""
    release: str = ""
    epoch: str = ""
    arch: str = ""


@dataclass
class _Erratum:
    title: str = ""
    description: str = ""
    severity: str = ""
    references: list[_Reference] = field(default_factory=list)
    packages: list[_Package] = field(default_factory=list)
    module_name: str = ""
    module_stream: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> _Erratum:
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        pkglist = data.get("pkglist") or {}
        module = pkglist.get("module") or {}
        return cls(
            title=_text(data.get("title")),
            description=_text(data.get("description")),
            severity=_text(data.get("severity")),
            references=[
                _Reference(
                    href=_text(ref.get("href")),
                    type=_text(ref.get("type")),
                    id=_text(ref.get("id")),
                )
                for ref in data.get("references") or []
            ],
            packages=[
                _Package(
                    name=_text(pkg.get("name")),
                    version=_text(pkg.get("version")),
                    release=_text(pkg.get("release")),
                    epoch=_text(pkg.get("epoch")),
                    arch=_text(pkg.get("arch")),
                )
                for pkg in pkglist.get("packages") or []
            ],
            module_name=_text(module.get("name")),
            module_stream=_text(module.get("stream")),
        )


def _generalize_severity(severity: str) -> Severity:
    return _SEVERITIES.get(severity.lower(), Severity.UNKNOWN)


class VulnSrc:
    """Reads AlmaLinux errata and stores their advisories."""

    def __init__(self, dbc: Config | None = None) -> None:
        self._dbc = dbc if dbc is not None else Config()

    def name(self) -> SourceID:
        return SOURCE.id

    def update(self, dir: str) -> None:
        errata = self._parse(os.path.join(dir, "vuln-list", _ALMA_DIR))
        try:
            self._dbc.batch_update(lambda tx: self._commit_all(tx, errata))
        except DatabaseError as exc:
            raise DatabaseError(f"error in Alma save: {exc}") from exc

    def _parse(self, root: str) -> dict[str, list[_Erratum]]:
        errata: dict[str, list[_Erratum]] = {}
        try:
            for path, handle in walk_files(root):
                try:
                    erratum = _Erratum.from_dict(json.load(handle))
                except (ValueError, TypeError, AttributeError) as exc:
                    raise ValueError(f"failed to decode Alma erratum: {exc}") from exc
                parts = path.split(os.sep)
                if len(parts) < 3:
                    continue
                errata.setdefault(parts[-3], []).append(erratum)
        except ValueError as exc:
            raise ValueError(f"error in Alma walk: {exc}") from exc
        return errata

    def _commit_all(self, tx: Transaction, errata: dict[str, list[_Erratum]]) -> None:
        for major_version, items in errata.items():
            platform = _PLATFORM_FORMAT.format(major_version)
            self._dbc.put_data_source(tx, platform, SOURCE)
            try:
                self._commit(tx, platform, items)
            except DatabaseError as exc:
                raise DatabaseError(f"Alma {major_version} commit error: {exc}") from exc

    def _commit(self, tx: Transaction, platform: str, errata: list[_Erratum]) -> None:
        for erratum in errata:
            references = [ref.href for ref in erratum.references if ref.type != "cve"]
            for ref in erratum.references:
                if ref.type != "cve":
                    continue
                advisories: dict[str, Advisory] = {}
                for pkg in erratum.packages:
                    if pkg.arch not in _ARCHES:
                        continue
                    pkg_name = pkg.name
                    if erratum.module_name and erratum.module_stream:
                        pkg_name = f"{erratum.module_name}:{erratum.module_stream}::{pkg.name}"
                    fixed = construct_version(pkg.epoch, pkg.version, pkg.release)
                    current = advisories.get(pkg_name)
                    if current is None or compare_rpm_versions(fixed, current.fixed_version) < 0:
                        advisories[pkg_name] = Advisory(fixed_version=fixed)

                vuln = VulnerabilityDetail(
                    severity=_generalize_severity(erratum.severity),
                    title=erratum.title,
                    description=erratum.description,
                    references=list(references),
                )
                self._put(tx, platform, ref.id, vuln, advisories)

    def _put(
        self,
        tx: Transaction,
        platform: str,
        cve_id: str,
        vuln: VulnerabilityDetail,
        advisories: dict[str, Advisory],
    ) -> None:
        self._dbc.put_vulnerability_detail(tx, cve_id, SOURCE.id, vuln)
        self._dbc.put_vulnerability_id(tx, cve_id)
        for pkg_name, advisory in advisories.items():
            self._dbc.put_advisory_detail(tx, cve_id, pkg_name, [platform], advisory)

    def get(self, release: str, pkg_name: str) -> list[Advisory]:
        try:
            return self._dbc.get_advisories(_PLATFORM_FORMAT.format(release), pkg_name)
        except DatabaseError as exc:
            raise DatabaseError(f"failed to get Alma advisories: {exc}") from exc