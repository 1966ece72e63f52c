"""Advisories from the Debian security tracker."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from .db import Config, DatabaseError
from .storage import Transaction
from .types import (
    Advisory,
    DataSource,
    Severity,
    SourceID,
    Status,
    VulnerabilityDetail,
    new_status,
)
from .utils import exists, walk_files

logger = logging.getLogger(__name__)

_DEBIAN_DIR = "vuln-list-debian"

_PACKAGE_TYPE = "package"
_XREF_TYPE = "xref"

_DISTRIBUTIONS_FILE = "distributions.json"
_SOURCES_DIR = "source"
_UPDATE_SOURCES_DIR = "updates-source"
_CVE_DIR = "CVE"
_DLA_DIR = "DLA"
_DSA_DIR = "DSA"

_PLATFORM_FORMAT = "debian {}"

# "removed" must not be treated as not-affected.
_SKIP_STATUSES = ("not-affected", "undetermined")

SOURCE = DataSource(
    id="debian",
    name="Debian Security Tracker",
    url="https://salsa.debian.org/security-tracker-team/security-tracker",
)

_URGENCIES = {
    "not yet assigned": Severity.UNKNOWN,
    "end-of-life": Severity.UNKNOWN,
    "unimportant": Severity.LOW,
    "low": Severity.LOW,
    "low*": Severity.LOW,
    "low**": Severity.LOW,
    "medium": Severity.MEDIUM,
    "medium*": Severity.MEDIUM,
    "medium**": Severity.MEDIUM,
    "high": Severity.HIGH,
    "high*": Severity.HIGH,
    "high**": Severity.HIGH,
}

_STATES = {
    # "end-of-life" is considered vulnerable.
    "no-dsa": "affected",
    "unfixed": "affected",
    "ignored": "will_not_fix",
    "postponed": "fix_deferred",
    "end-of-life": "end_of_life",
}


# Version comparison

_EPOCH = re.compile(r"[0-9]+")
_UPSTREAM = re.compile(r"[0-9][0-9A-Za-z.+~:-]*")
_REVISION = re.compile(r"[0-9A-Za-z.+~]*")
_DIGITS = "0123456789"


def _parse_deb_version(value: str) -> tuple[int, str, str]:
    value = value.strip()
    epoch = 0
    if ":" in value:
        head, value = value.split(":", 1)
        if not _EPOCH.fullmatch(head):
            raise ValueError(f"epoch parse error: {head!r}")
        epoch = int(head)
    upstream, revision = value, ""
    if "-" in value:
        upstream, revision = value.rsplit("-", 1)
    if not upstream:
        raise ValueError("upstream_version is empty")
    if upstream[0] not in _DIGITS:
        raise ValueError(f"upstream_version must start with digit: {upstream!r}")
    if not _UPSTREAM.fullmatch(upstream):
        raise ValueError(f"upstream_version includes invalid character: {upstream!r}")
    if not _REVISION.fullmatch(revision):
        raise ValueError(f"debian_revision includes invalid character: {revision!r}")
    return epoch, upstream, revision


def _order(char: str) -> int:
    if char == "~":
        return -1
    if char in _DIGITS:
        return 0
    if char.isascii() and char.isalpha():
        return ord(char)
    return ord(char) + 256


def _verrevcmp(a: str, b: str) -> int:
    i = j = 0
    while i < len(a) or j < len(b):
        while (i < len(a) and a[i] not in _DIGITS) or (j < len(b) and b[j] not in _DIGITS):
            ac = _order(a[i]) if i < len(a) else 0
            bc = _order(b[j]) if j < len(b) else 0
            if ac != bc:
                return ac - bc
            i += 1
            j += 1
        while i < len(a) and a[i] == "0":
            i += 1
        while j < len(b) and b[j] == "0":
            j += 1
        first_diff = 0
        while i < len(a) and a[i] in _DIGITS and j < len(b) and b[j] in _DIGITS:
            if not first_diff:
                first_diff = ord(a[i]) - ord(b[j])
            i += 1
            j += 1
        if i < len(a) and a[i] in _DIGITS:
            return 1
        if j < len(b) and b[j] in _DIGITS:
            return -1
        if first_diff:
            return first_diff
    return 0


def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


def compare_deb_versions(v1: str, v2: str) -> int:
    """Compare two Debian versions; an empty version is the lowest. Return -1, 0 or 1."""
    if not v1 and not v2:
        return 0
    if not v1:
        return -1
    if not v2:
        return 1
    try:
        epoch1, upstream1, revision1 = _parse_deb_version(v1)
        epoch2, upstream2, revision2 = _parse_deb_version(v2)
    except ValueError as exc:
        raise ValueError(f"version error: {exc}") from exc
    if epoch1 != epoch2:
        return 1 if epoch1 > epoch2 else -1
    result = _verrevcmp(upstream1, upstream2)
    if result:
        return _sign(result)
    return _sign(_verrevcmp(revision1, revision2))


def _has_fixed_version(sid_ver: str, code_ver: str) -> bool:
    """True if the release version already includes the fix made in sid."""
    if not sid_ver:
        return False
    try:
        return compare_deb_versions(code_ver, sid_ver) >= 0
    except ValueError as exc:
        raise ValueError(f"version comparison error: {exc}") from exc


# Tracker data


def _field(data: dict[str, Any], name: str) -> Any:
    if name in data:
        return data[name]
    lowered = name.lower()
    for key, value in data.items():
        if key.lower() == lowered:
            return value
    return None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _texts(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("expected a JSON array")
    return [_text(item) for item in value]


@dataclass
class _Annotation:
    type: str = ""
    release: str = ""
    package: str = ""
    kind: str = ""
    version: str = ""
    severity: str = ""
    bugs: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> _Annotation:
        if not isinstance(data, dict):
            raise ValueError("annotation must be a JSON object")
        return cls(
            type=_text(_field(data, "Type")),
            release=_text(_field(data, "Release")),
            package=_text(_field(data, "Package")),
            kind=_text(_field(data, "Kind")),
            version=_text(_field(data, "Version")),
            severity=_text(_field(data, "Severity")),
            bugs=_texts(_field(data, "Bugs")),
        )


@dataclass
class _Bug:
    id: str = ""
    description: str = ""
    annotations: list[_Annotation] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> _Bug:
        if not isinstance(data, dict):
            raise ValueError("bug must be a JSON object")
        header = _field(data, "Header") or {}
        if not isinstance(header, dict):
            raise ValueError("header must be a JSON object")
        annotations = _field(data, "Annotations") or []
        if not isinstance(annotations, list):
            raise ValueError("annotations must be a JSON array")
        return cls(
            id=_text(_field(header, "ID")),
            description=_text(_field(header, "Description")),
            annotations=[_Annotation.from_dict(item) for item in annotations],
        )


@dataclass(frozen=True)
class _Key:
    code_name: str = ""  # empty for sid
    pkg_name: str = ""
    vuln_id: str = ""  # CVE-ID, DLA-ID or DSA-ID
    severity: str = ""


@dataclass
class DebianAdvisory:
    """An advisory as gathered from the tracker, before it is stored."""

    vulnerability_id: str = ""
    platform: str = ""
    pkg_name: str = ""
    vendor_ids: list[str] = field(default_factory=list)
    state: str = ""
    severity: str = ""
    fixed_version: str = ""
    title: str = ""


@dataclass
class _Parsed:
    # codename -> major version, e.g. "buster" -> "10"
    distributions: dict[str, str] = field(default_factory=dict)
    # vulnerability ID -> short description
    details: dict[str, str] = field(default_factory=dict)
    # (codename, package) -> latest version in that release
    pkg_versions: dict[_Key, str] = field(default_factory=dict)
    # (package, vulnerability, severity) -> fixed version in sid, "" when unfixed
    sid_fixed_versions: dict[_Key, str] = field(default_factory=dict)
    bkt_advisories: dict[_Key, DebianAdvisory] = field(default_factory=dict)
    not_affected: set[_Key] = field(default_factory=set)


CustomPut = Callable[[Config, Transaction, Any], None]


def _severity_from_urgency(urgency: str) -> Severity:
    return _URGENCIES.get(urgency, Severity.UNKNOWN)


def _status_from_state(state: str) -> Status:
    return new_status(_STATES.get(state.lower(), "unknown"))


def _default_put(dbc: Config, tx: Transaction, advisory: Any) -> None:
    """Store a DebianAdvisory in the database."""
    if not isinstance(advisory, DebianAdvisory):
        raise TypeError("unknown type")

    detail = Advisory(
        vendor_ids=list(advisory.vendor_ids),
        status=_status_from_state(advisory.state),
        severity=_severity_from_urgency(advisory.severity),
        fixed_version=advisory.fixed_version,
    )
    vuln_id = advisory.vulnerability_id
    dbc.put_advisory_detail(tx, vuln_id, advisory.pkg_name, [advisory.platform], detail)
    dbc.put_vulnerability_detail(tx, vuln_id, SOURCE.id, VulnerabilityDetail(title=advisory.title))
    dbc.put_vulnerability_id(tx, vuln_id)
    dbc.put_data_source(tx, advisory.platform, SOURCE)


class VulnSrc:
    """Reads the Debian security tracker data and stores its advisories."""

    def __init__(self, put: CustomPut | None = None, dbc: Config | None = None) -> None:
        self._put = put if put is not None else _default_put
        self._dbc = dbc if dbc is not None else Config()

    def name(self) -> SourceID:
        return SOURCE.id

    def update(self, dir: str) -> None:
        try:
            parsed = self._parse(dir)
        except ValueError as exc:
            raise ValueError(f"parse error: {exc}") from exc

        logger.info("Saving Debian DB")
        try:
            self._dbc.batch_update(lambda tx: self._commit(tx, parsed))
        except DatabaseError as exc:
            raise DatabaseError(f"save error: {exc}") from exc
        logger.info("Saved Debian DB")

    # parsing

    def _parse(self, dir: str) -> _Parsed:
        root = os.path.join(dir, _DEBIAN_DIR, "tracker")
        parsed = _Parsed()
        try:
            self._parse_distributions(root, parsed)
        except ValueError as exc:
            raise ValueError(f"distributions error: {exc}") from exc
        try:
            self._parse_sources(os.path.join(root, _SOURCES_DIR), parsed)
        except ValueError as exc:
            raise ValueError(f"source parse error: {exc}") from exc
        try:
            self._parse_sources(os.path.join(root, _UPDATE_SOURCES_DIR), parsed)
        except ValueError as exc:
            raise ValueError(f"updates-source parse error: {exc}") from exc
        try:
            logger.info("  Parsing CVE JSON files...")
            self._parse_bugs(os.path.join(root, _CVE_DIR), lambda bug: self._parse_cve(bug, parsed))
        except ValueError as exc:
            raise ValueError(f"CVE error: CVE parse error: {exc}") from exc
        for label, sub_dir in (("DLA", _DLA_DIR), ("DSA", _DSA_DIR)):
            logger.info("  Parsing %s JSON files...", label)
            try:
                self._parse_bugs(
                    os.path.join(root, sub_dir), lambda bug: self._parse_advisory(bug, parsed)
                )
            except ValueError as exc:
                raise ValueError(f"{label} error: {label} parse error: {exc}") from exc
        return parsed

    def _parse_distributions(self, root: str, parsed: _Parsed) -> None:
        logger.info("  Parsing distributions...")
        with open(os.path.join(root, _DISTRIBUTIONS_FILE), encoding="utf-8") as handle:
            try:
                data = json.load(handle)
                if not isinstance(data, dict):
                    raise ValueError("expected a JSON object")
                for dist, value in data.items():
                    if not isinstance(value, dict):
                        raise ValueError(f"distribution {dist!r} must be a JSON object")
                    major = _text(value.get("major-version"))
                    if major:  # an empty major version is sid
                        parsed.distributions[dist] = major
            except ValueError as exc:
                raise ValueError(f"failed to decode Debian distribution JSON: {exc}") from exc

    def _parse_sources(self, dir: str, parsed: _Parsed) -> None:
        for code in list(parsed.distributions):
            code_path = os.path.join(dir, code)
            if not exists(code_path):
                continue
            logger.info("  Parsing %s sources...", code)
            for path, handle in walk_files(code_path):
                try:
                    data = json.load(handle)
                    if not isinstance(data, dict):
                        raise ValueError("expected a JSON object")
                    packages = _texts(_field(data, "Package"))
                    versions = _texts(_field(data, "Version"))
                except ValueError as exc:
                    raise ValueError(f"failed to decode {path}: {exc}") from exc
                if not packages or not versions:
                    continue
                key = _Key(code_name=code, pkg_name=packages[0])
                version = versions[0]
                stored = parsed.pkg_versions.get(key)
                if stored is not None:
                    try:
                        if compare_deb_versions(stored, version) >= 0:
                            continue
                    except ValueError as exc:
                        raise ValueError(f"version comparison error: {exc}") from exc
                parsed.pkg_versions[key] = version

    def _parse_bugs(self, dir: str, fn: Callable[[_Bug], None]) -> None:
        for _, handle in walk_files(dir):
            try:
                bug = _Bug.from_dict(json.load(handle))
            except ValueError as exc:
                raise ValueError(f"json decode error: {exc}") from exc
            try:
                fn(bug)
            except ValueError as exc:
                raise ValueError(f"parse debian bug error: {exc}") from exc

    def _parse_cve(self, bug: _Bug, parsed: _Parsed) -> None:
        severities: dict[str, str] = {}
        cve_id = bug.id
        parsed.details[cve_id] = bug.description.strip("()")

        for ann in bug.annotations:
            if ann.type != _PACKAGE_TYPE:
                continue
            key = _Key(code_name=ann.release, pkg_name=ann.package, vuln_id=cve_id)

            if ann.kind in _SKIP_STATUSES:
                parsed.not_affected.add(key)
                continue

            if not ann.release:  # sid
                severity = ""
                if ann.severity:
                    severities[ann.package] = ann.severity
                    severity = ann.severity
                sid_key = _Key(pkg_name=ann.package, vuln_id=cve_id, severity=severity)
                parsed.sid_fixed_versions[sid_key] = ann.version
                continue

            advisory = DebianAdvisory(
                fixed_version=ann.version,  # may be empty, e.g. no-dsa
                severity=severities.get(ann.package, ""),
            )
            if not ann.version:
                advisory.state = ann.kind
            # DLA/DSA may override this later.
            parsed.bkt_advisories[key] = advisory

    def _parse_advisory(self, bug: _Bug, parsed: _Parsed) -> None:
        cve_ids: list[str] = []
        advisory_id = bug.id
        parsed.details[advisory_id] = bug.description.strip("()")

        for ann in bug.annotations:
            if ann.type == _XREF_TYPE:
                cve_ids = ann.bugs
                continue
            if ann.type != _PACKAGE_TYPE:
                continue

            # Advisories without CVE-IDs are stored under their own ID.
            vuln_ids = cve_ids or [advisory_id]
            for vuln_id in vuln_ids:
                key = _Key(code_name=ann.release, pkg_name=ann.package, vuln_id=vuln_id)
                if ann.kind in _SKIP_STATUSES:
                    parsed.not_affected.add(key)
                    continue

                adv = parsed.bkt_advisories.get(key)
                if adv is not None:
                    # When several advisories fix one CVE, the latest fix wins.
                    try:
                        result = compare_deb_versions(ann.version, adv.fixed_version)
                    except ValueError as exc:
                        raise ValueError(f"version error {advisory_id}: {exc}") from exc
                    if result > 0:
                        adv.fixed_version = ann.version
                        adv.state = ""
                    adv.vendor_ids.append(advisory_id)
                else:
                    adv = DebianAdvisory(fixed_version=ann.version, vendor_ids=[advisory_id])
                parsed.bkt_advisories[key] = adv

    # saving

    def _commit(self, tx: Transaction, parsed: _Parsed) -> None:
        for sid_key, sid_ver in parsed.sid_fixed_versions.items():
            pkg_name, cve_id = sid_key.pkg_name, sid_key.vuln_id
            if _Key(pkg_name=pkg_name, vuln_id=cve_id) in parsed.not_affected:
                continue

            for code in parsed.distributions:
                key = _Key(code_name=code, pkg_name=pkg_name, vuln_id=cve_id)
                if key in parsed.not_affected:
                    continue

                existing = parsed.bkt_advisories.get(key)
                if existing is not None and not existing.state:
                    # Stored later with its own fixed version.
                    continue
                if existing is not None:
                    adv = replace(existing, vendor_ids=list(existing.vendor_ids))
                else:
                    adv = DebianAdvisory()

                code_ver = parsed.pkg_versions.get(_Key(code_name=code, pkg_name=pkg_name))
                if code_ver is None:
                    continue

                if _has_fixed_version(sid_ver, code_ver):
                    # "no-dsa" or "postponed" was wrong: the release already has the fix.
                    adv.fixed_version = sid_ver
                    adv.state = ""
                    parsed.bkt_advisories.pop(key, None)

                adv.severity = sid_key.severity
                self._put_advisory(tx, parsed, key, adv)

        for key, advisory in parsed.bkt_advisories.items():
            self._put_advisory(tx, parsed, key, advisory)

    def _put_advisory(
        self, tx: Transaction, parsed: _Parsed, key: _Key, advisory: DebianAdvisory
    ) -> None:
        major = parsed.distributions.get(key.code_name)
        if major is None:
            # Stale codename such as squeeze or sarge.
            return
        advisory.vulnerability_id = key.vuln_id
        advisory.pkg_name = key.pkg_name
        advisory.platform = _PLATFORM_FORMAT.format(major)
        # The Debian description is short, so it serves as the title.
        advisory.title = parsed.details.get(key.vuln_id, "")
        try:
            self._put(self._dbc, tx, advisory)
        except DatabaseError as exc:
            raise DatabaseError(f"put error: {exc}") from exc

    def get(self, release: str, pkg_name: str) -> list[Advisory]:
        try:
            return self._dbc.get_advisories(_PLATFORM_FORMAT.format(release), pkg_name)
        except DatabaseError as exc:
            raise DatabaseError(f"failed to get Debian advisories: {exc}") from exc