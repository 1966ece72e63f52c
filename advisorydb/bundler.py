"""Advisories from the Ruby advisory database."""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from typing import Any, Iterator

import yaml

from .bucket import bucket_name
from .db import Config, DatabaseError
from .storage import Transaction
from .types import Advisory, DataSource, SourceID, VulnerabilityDetail

_BUNDLER_DIR = "ruby-advisory-db"

SOURCE = DataSource(
    id="ruby-advisory-db",
    name="Ruby Advisory Database",
    url="https://github.com/rubysec/ruby-advisory-db",
)

BUCKET_NAME = bucket_name("rubygems", SOURCE.name)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _texts(value: Any) -> list[str]:
    return [_text(item) for item in value or []]


@dataclass
class _RawAdvisory:
    gem: str = ""
    cve: str = ""
    ghsa: str = ""
    title: str = ""
    url: str = ""
    description: str = ""
    cvss_v2: float = 0.0
    cvss_v3: float = 0.0
    patched_versions: list[str] = field(default_factory=list)
    unaffected_versions: list[str] = field(default_factory=list)
    related_urls: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> _RawAdvisory:
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("expected a mapping")
        related = data.get("related") or {}
        if not isinstance(related, dict):
            raise ValueError("related must be a mapping")
        return cls(
            gem=_text(data.get("gem")),
            cve=_text(data.get("cve")),
            ghsa=_text(data.get("ghsa")),
            title=_text(data.get("title")),
            url=_text(data.get("url")),
            description=_text(data.get("description")),
            cvss_v2=float(data.get("cvss_v2") or 0.0),
            cvss_v3=float(data.get("cvss_v3") or 0.0),
            patched_versions=_texts(data.get("patched_versions")),
            unaffected_versions=_texts(data.get("unaffected_versions")),
            related_urls=_texts(related.get("url")),
        )


def _walk(path: str) -> Iterator[str]:
    info = os.lstat(path)
    if not stat.S_ISDIR(info.st_mode):
        yield path
        return
    for name in sorted(os.listdir(path)):
        yield from _walk(os.path.join(path, name))


class VulnSrc:
    """Reads the Ruby advisory database and stores its advisories."""

    def __init__(self, dbc: Config | None = None) -> None:
        self._dbc = dbc if dbc is not None else Config()

    def name(self) -> SourceID:
        return SOURCE.id

    def update(self, dir: str) -> None:
        root = os.path.join(dir, _BUNDLER_DIR, "gems")

        def commit(tx: Transaction) -> None:
            self._dbc.put_data_source(tx, BUCKET_NAME, SOURCE)
            try:
                for path in _walk(root):
                    self._save_file(tx, path)
            except (OSError, ValueError) as exc:
                raise ValueError(f"failed to walk ruby advisories: {exc}") from exc

        try:
            self._dbc.batch_update(commit)
        except DatabaseError as exc:
            raise DatabaseError(f"failed to update bundler vulnerabilities: {exc}") from exc

    def _save_file(self, tx: Transaction, path: str) -> None:
        if os.path.basename(path).upper().startswith("OSVDB"):
            return
        with open(path, "rb") as handle:
            content = handle.read()
        try:
            raw = _RawAdvisory.from_dict(yaml.safe_load(content))
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            raise ValueError(f"failed to unmarshal YAML: {exc}") from exc

        if "osvdb.org" in raw.url.lower():
            raw.url = ""

        if raw.cve:
            vuln_id = f"CVE-{raw.cve}"
        elif raw.ghsa:
            vuln_id = f"GHSA-{raw.ghsa}"
        else:
            return

        advisory = Advisory(
            patched_versions=raw.patched_versions,
            unaffected_versions=raw.unaffected_versions,
        )
        self._dbc.put_advisory_detail(tx, vuln_id, raw.gem, [BUCKET_NAME], advisory)

        vuln = VulnerabilityDetail(
            cvss_score=raw.cvss_v2,
            cvss_score_v3=raw.cvss_v3,
            references=[raw.url, *raw.related_urls],
            title=raw.title,
            description=raw.description,
        )
        self._dbc.put_vulnerability_detail(tx, vuln_id, SOURCE.id, vuln)
        self._dbc.put_vulnerability_id(tx, vuln_id)