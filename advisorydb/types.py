"""Core data types stored in the advisory database."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from .utils import parse_time

SourceID = str
Ecosystem = str

SEVERITY_NAMES = ("UNKNOWN", "LOW", "MEDIUM", "HIGH", "CRITICAL")

# VEX statuses plus the Red Hat specific "will_not_fix" and "fix_deferred".
STATUSES = (
    "unknown",
    "not_affected",
    "affected",
    "fixed",
    "under_investigation",
    "will_not_fix",
    "fix_deferred",
    "end_of_life",
)


class Severity(enum.IntEnum):
    """Severity of a vulnerability."""

    UNKNOWN = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    def __str__(self) -> str:
        return SEVERITY_NAMES[self]


class Status(enum.IntEnum):
    """Fix status of an advisory."""

    UNKNOWN = 0
    NOT_AFFECTED = 1
    AFFECTED = 2
    FIXED = 3
    UNDER_INVESTIGATION = 4
    WILL_NOT_FIX = 5
    FIX_DEFERRED = 6
    END_OF_LIFE = 7

    def __str__(self) -> str:
        return STATUSES[self]


def new_severity(severity: str) -> Severity:
    """Return the severity named *severity*; raise ValueError if unknown."""
    try:
        return Severity(SEVERITY_NAMES.index(severity))
    except ValueError:
        raise ValueError(f"unknown severity: {severity}") from None


def _severity_or_unknown(name: str) -> Severity:
    try:
        return new_severity(name)
    except ValueError:
        return Severity.UNKNOWN


def compare_severity_string(sev1: str, sev2: str) -> int:
    """Positive when *sev2* is more severe than *sev1*; unknown names count as UNKNOWN."""
    return int(_severity_or_unknown(sev2)) - int(_severity_or_unknown(sev1))


def new_status(status: str) -> Status:
    """Return the status named *status*, or UNKNOWN."""
    try:
        return Status(STATUSES.index(status))
    except ValueError:
        return Status.UNKNOWN


def _status_from_int(value: Any) -> Status:
    try:
        return Status(int(value))
    except ValueError:
        return Status.UNKNOWN


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    total = int(offset.total_seconds()) if offset else 0
    if total == 0:
        return text + "Z"
    sign = "+" if total > 0 else "-"
    hours, rest = divmod(abs(total), 3600)
    return f"{text}{sign}{hours:02d}:{rest // 60:02d}"


def _optional_time(value: Any) -> datetime | None:
    return parse_time(value) if value else None


def _compact(pairs: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    return {key: value for key, value in pairs if value}


def _cvss_to_dict(cvss: CVSS) -> dict[str, Any]:
    return _compact(
        [
            ("V2Vector", cvss.v2_vector),
            ("V3Vector", cvss.v3_vector),
            ("V2Score", cvss.v2_score),
            ("V3Score", cvss.v3_score),
        ]
    )


def _cvss_from_dict(data: dict[str, Any]) -> CVSS:
    return CVSS(
        v2_vector=data.get("V2Vector") or "",
        v3_vector=data.get("V3Vector") or "",
        v2_score=float(data.get("V2Score") or 0.0),
        v3_score=float(data.get("V3Score") or 0.0),
    )


@dataclass
class CVSS:
    """CVSS vectors and scores reported by one vendor."""

    v2_vector: str = ""
    v3_vector: str = ""
    v2_score: float = 0.0
    v3_score: float = 0.0


@dataclass
class DataSource:
    """Where a set of advisories comes from."""

    id: SourceID = ""
    name: str = ""
    url: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _compact([("ID", self.id), ("Name", self.name), ("URL", self.url)])

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataSource:
        return cls(
            id=data.get("ID") or "",
            name=data.get("Name") or "",
            url=data.get("URL") or "",
        )


@dataclass
class VulnerabilityDetail:
    """Vulnerability details as reported by a single source."""

    id: str = ""
    cvss_score: float = 0.0
    cvss_vector: str = ""
    cvss_score_v3: float = 0.0
    cvss_vector_v3: str = ""
    severity: Severity = Severity.UNKNOWN
    severity_v3: Severity = Severity.UNKNOWN
    cwe_ids: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    title: str = ""
    description: str = ""
    published_date: datetime | None = None
    last_modified_date: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            [
                ("ID", self.id),
                ("CvssScore", self.cvss_score),
                ("CvssVector", self.cvss_vector),
                ("CvssScoreV3", self.cvss_score_v3),
                ("CvssVectorV3", self.cvss_vector_v3),
                ("Severity", int(self.severity)),
                ("SeverityV3", int(self.severity_v3)),
                ("CweIDs", list(self.cwe_ids)),
                ("References", list(self.references)),
                ("Title", self.title),
                ("Description", self.description),
                ("PublishedDate", self.published_date and _format_time(self.published_date)),
                (
                    "LastModifiedDate",
                    self.last_modified_date and _format_time(self.last_modified_date),
                ),
            ]
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VulnerabilityDetail:
        return cls(
            id=data.get("ID") or "",
            cvss_score=float(data.get("CvssScore") or 0.0),
            cvss_vector=data.get("CvssVector") or "",
            cvss_score_v3=float(data.get("CvssScoreV3") or 0.0),
            cvss_vector_v3=data.get("CvssVectorV3") or "",
            severity=Severity(int(data.get("Severity") or 0)),
            severity_v3=Severity(int(data.get("SeverityV3") or 0)),
            cwe_ids=list(data.get("CweIDs") or []),
            references=list(data.get("References") or []),
            title=data.get("Title") or "",
            description=data.get("Description") or "",
            published_date=_optional_time(data.get("PublishedDate")),
            last_modified_date=_optional_time(data.get("LastModifiedDate")),
        )


@dataclass
class Advisory:
    """A security advisory for one package.

    In stored form the status is kept as an integer to keep the database small.
    """

    vulnerability_id: str = ""
    vendor_ids: list[str] = field(default_factory=list)
    arches: list[str] = field(default_factory=list)
    status: Status = Status.UNKNOWN
    severity: Severity = Severity.UNKNOWN
    fixed_version: str = ""
    affected_version: str = ""
    vulnerable_versions: list[str] = field(default_factory=list)
    patched_versions: list[str] = field(default_factory=list)
    unaffected_versions: list[str] = field(default_factory=list)
    data_source: DataSource | None = None
    custom: Any = None

    def to_dict(self) -> dict[str, Any]:
        result = _compact(
            [
                ("VulnerabilityID", self.vulnerability_id),
                ("VendorIDs", list(self.vendor_ids)),
                ("Arches", list(self.arches)),
                ("Severity", int(self.severity)),
                ("FixedVersion", self.fixed_version),
                ("AffectedVersion", self.affected_version),
                ("VulnerableVersions", list(self.vulnerable_versions)),
                ("PatchedVersions", list(self.patched_versions)),
                ("UnaffectedVersions", list(self.unaffected_versions)),
            ]
        )
        if self.data_source is not None:
            result["DataSource"] = self.data_source.to_dict()
        if self.custom is not None:
            result["Custom"] = self.custom
        if self.status:
            result["Status"] = int(self.status)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Advisory:
        source = data.get("DataSource")
        return cls(
            vulnerability_id=data.get("VulnerabilityID") or "",
            vendor_ids=list(data.get("VendorIDs") or []),
            arches=list(data.get("Arches") or []),
            status=_status_from_int(data.get("Status") or 0),
            severity=Severity(int(data.get("Severity") or 0)),
            fixed_version=data.get("FixedVersion") or "",
            affected_version=data.get("AffectedVersion") or "",
            vulnerable_versions=list(data.get("VulnerableVersions") or []),
            patched_versions=list(data.get("PatchedVersions") or []),
            unaffected_versions=list(data.get("UnaffectedVersions") or []),
            data_source=DataSource.from_dict(source) if source is not None else None,
            custom=data.get("Custom"),
        )


@dataclass
class Vulnerability:
    """A vulnerability merged from the details of all sources."""

    title: str = ""
    description: str = ""
    severity: str = ""
    cwe_ids: list[str] = field(default_factory=list)
    vendor_severity: dict[SourceID, Severity] = field(default_factory=dict)
    cvss: dict[SourceID, CVSS] = field(default_factory=dict)
    references: list[str] = field(default_factory=list)
    published_date: datetime | None = None
    last_modified_date: datetime | None = None
    custom: Any = None

    def to_dict(self) -> dict[str, Any]:
        result = _compact(
            [
                ("Title", self.title),
                ("Description", self.description),
                ("Severity", self.severity),
                ("CweIDs", list(self.cwe_ids)),
                (
                    "VendorSeverity",
                    {key: int(self.vendor_severity[key]) for key in sorted(self.vendor_severity)},
                ),
                ("CVSS", {key: _cvss_to_dict(self.cvss[key]) for key in sorted(self.cvss)}),
                ("References", list(self.references)),
                ("PublishedDate", self.published_date and _format_time(self.published_date)),
                (
                    "LastModifiedDate",
                    self.last_modified_date and _format_time(self.last_modified_date),
                ),
            ]
        )
        if self.custom is not None:
            result["Custom"] = self.custom
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Vulnerability:
        return cls(
            title=data.get("Title") or "",
            description=data.get("Description") or "",
            severity=data.get("Severity") or "",
            cwe_ids=list(data.get("CweIDs") or []),
            vendor_severity={
                key: Severity(int(value))
                for key, value in (data.get("VendorSeverity") or {}).items()
            },
            cvss={
                key: _cvss_from_dict(value or {})
                for key, value in (data.get("CVSS") or {}).items()
            },
            references=list(data.get("References") or []),
            published_date=_optional_time(data.get("PublishedDate")),
            last_modified_date=_optional_time(data.get("LastModifiedDate")),
            custom=data.get("Custom"),
        )