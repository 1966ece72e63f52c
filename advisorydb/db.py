"""Access to the advisory database: advisories, vulnerabilities and data sources."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from .storage import Bucket, Store, Transaction
from .types import Advisory, DataSource, SourceID, Vulnerability, VulnerabilityDetail

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

_DB_FILE = "advisory.db"
_ADVISORY_DETAIL_BUCKET = "advisory-detail"
_DATA_SOURCE_BUCKET = "data-source"
_VULNERABILITY_BUCKET = "vulnerability"
_VULNERABILITY_DETAIL_BUCKET = "vulnerability-detail"
_VULNERABILITY_ID_BUCKET = "vulnerability-id"
_REDHAT_CPE_ROOT_BUCKET = "Red Hat CPE"
_REDHAT_REPO_BUCKET = "repository"
_REDHAT_NVR_BUCKET = "nvr"
_REDHAT_CPE_BUCKET = "cpe"  # not used for scanning; kept for debugging

_store: Store | None = None


class DatabaseError(Exception):
    """Raised when a database operation fails."""


@dataclass
class Value:
    """A stored value together with the data source of its root bucket."""

    source: DataSource = field(default_factory=DataSource)
    content: bytes = b""


def db_dir(cache_dir: str) -> str:
    return os.path.join(cache_dir, "db")


def db_path(cache_dir: str) -> str:
    return os.path.join(db_dir(cache_dir), _DB_FILE)


def init(cache_dir: str) -> None:
    """Open the database under *cache_dir*; a corrupt database file is replaced."""
    global _store
    path = db_path(cache_dir)
    try:
        os.makedirs(os.path.dirname(path), mode=0o700, exist_ok=True)
    except OSError as exc:
        raise DatabaseError(f"failed to mkdir: {exc}") from exc
    try:
        try:
            _store = Store.open(path)
        except ValueError:
            os.remove(path)
            _store = Store.open(path)
    except (OSError, ValueError) as exc:
        raise DatabaseError(f"failed to open db: {exc}") from exc


def close() -> None:
    """Close the database if it is open."""
    global _store
    if _store is None:
        return
    _store.close()
    _store = None


def _require_store() -> Store:
    if _store is None:
        raise DatabaseError("database is not initialized")
    return _store


def _json_default(obj: Any) -> Any:
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"cannot encode {type(obj).__name__} as JSON")


def _encode(value: Any) -> bytes:
    return json.dumps(
        value, default=_json_default, ensure_ascii=False, separators=(",", ":")
    ).encode("utf-8")


def _decode_object(content: bytes) -> dict[str, Any]:
    value = json.loads(content)
    if not isinstance(value, dict):
        raise ValueError(f"expected a JSON object, got {type(value).__name__}")
    return value


def _navigate(start: Transaction | Bucket | None, names: Sequence[str]) -> Bucket | None:
    bkt: Any = start
    for name in names:
        if bkt is None:
            return None
        bkt = bkt.bucket(name)
    return bkt


class Config:
    """Operations on the open database."""

    def connection(self) -> Store | None:
        return _store

    def batch_update(self, fn: Callable[[Transaction], Any]) -> Any:
        """Run *fn* with a write transaction."""
        try:
            return _require_store().batch(fn)
        except Exception as exc:
            raise DatabaseError(f"error in batch update: {exc}") from exc

    # generic helpers

    def _put(self, tx: Transaction, bkt_names: Sequence[str], key: str, value: Any) -> None:
        if not bkt_names:
            raise DatabaseError("empty bucket name")
        first, *rest = bkt_names
        try:
            bkt = tx.create_bucket_if_not_exists(first)
        except (TypeError, ValueError) as exc:
            raise DatabaseError(f"failed to create '{first}' bucket: {exc}") from exc
        for name in rest:
            try:
                bkt = bkt.create_bucket_if_not_exists(name)
            except (TypeError, ValueError) as exc:
                raise DatabaseError(f"failed to create a bucket: {exc}") from exc
        try:
            data = _encode(value)
        except (TypeError, ValueError) as exc:
            raise DatabaseError(f"failed to marshal JSON: {exc}") from exc
        try:
            bkt.put(key, data)
        except (TypeError, ValueError) as exc:
            raise DatabaseError(f"failed to put '{key}': {exc}") from exc

    def _get(self, bkt_names: Sequence[str], key: str) -> bytes:
        if not bkt_names:
            raise DatabaseError("failed to get data from db: empty bucket name")
        try:
            with _require_store().view() as tx:
                bkt = _navigate(tx, bkt_names)
                if bkt is None:
                    return b""
                return bkt.get(key) or b""
        except ValueError as exc:
            raise DatabaseError(f"failed to get data from db: {exc}") from exc

    def _for_each(self, bkt_names: Sequence[str]) -> dict[str, Value]:
        if len(bkt_names) < 2:
            raise DatabaseError(f"bucket must be nested: {list(bkt_names)}")
        root_name, *nested = bkt_names
        values: dict[str, Value] = {}
        try:
            with _require_store().view() as tx:
                if "::" in root_name:
                    # e.g. "pip::", "rubygems::"
                    roots = tx.bucket_names(root_name)
                else:
                    roots = [root_name]
                for name in roots:
                    root = tx.bucket(name)
                    if root is None:
                        continue
                    try:
                        source = self._get_data_source(tx, name)
                    except DatabaseError as exc:
                        logger.debug("Data source error: %s", exc)
                        source = DataSource()
                    bkt = _navigate(root, nested)
                    if bkt is None:
                        continue
                    for key, content in bkt.items():
                        if content:
                            values[key] = Value(source=source, content=content)
        except ValueError as exc:
            raise DatabaseError(
                f"failed to get all key/value in the specified bucket: {exc}"
            ) from exc
        return values

    def _delete_bucket(self, name: str) -> None:
        try:
            with _require_store().update() as tx:
                tx.delete_bucket(name)
        except (KeyError, ValueError) as exc:
            raise DatabaseError(f"failed to delete bucket: {exc}") from exc

    # advisories

    def put_advisory(
        self, tx: Transaction, bkt_names: Sequence[str], key: str, advisory: Any
    ) -> None:
        try:
            self._put(tx, bkt_names, key, advisory)
        except DatabaseError as exc:
            raise DatabaseError(f"failed to put advisory: {exc}") from exc

    def for_each_advisory(self, sources: Sequence[str], pkg_name: str) -> dict[str, Value]:
        return self._for_each([*sources, pkg_name])

    def get_advisories(self, source: str, pkg_name: str) -> list[Advisory]:
        """Advisories for *pkg_name* in *source*; a source ending in "::" is a prefix."""
        try:
            values = self.for_each_advisory([source], pkg_name)
        except DatabaseError as exc:
            raise DatabaseError(f"advisory foreach error: {exc}") from exc

        results = []
        for vuln_id, value in values.items():
            try:
                advisory = Advisory.from_dict(_decode_object(value.content))
            except (ValueError, TypeError, AttributeError) as exc:
                raise DatabaseError(f"failed to unmarshal advisory JSON: {exc}") from exc
            advisory.vulnerability_id = vuln_id
            if value.source != DataSource():
                advisory.data_source = DataSource(
                    id=value.source.id, name=value.source.name, url=value.source.url
                )
            results.append(advisory)
        return results

    # advisory details

    def put_advisory_detail(
        self,
        tx: Transaction,
        vuln_id: str,
        pkg_name: str,
        nested_bkt_names: Sequence[str],
        advisory: Any,
    ) -> None:
        bkt_names = [_ADVISORY_DETAIL_BUCKET, vuln_id, *nested_bkt_names]
        try:
            self._put(tx, bkt_names, pkg_name, advisory)
        except DatabaseError as exc:
            raise DatabaseError(f"failed to put advisory detail: {exc}") from exc

    def save_advisory_details(self, tx: Transaction, vuln_id: str) -> None:
        """Copy the advisories of *vuln_id* from the detail bucket into each vendor's bucket."""
        cve_bucket = _navigate(tx, [_ADVISORY_DETAIL_BUCKET, vuln_id])
        if cve_bucket is None:
            return
        try:
            self._save_advisories(tx, cve_bucket, [], vuln_id)
        except DatabaseError as exc:
            raise DatabaseError(f"walk advisories error: {exc}") from exc

    def _save_advisories(
        self, tx: Transaction, bkt: Bucket | None, bkt_names: list[str], vuln_id: str
    ) -> None:
        if bkt is None:
            return
        for key, content in bkt.items():
            names = [*bkt_names, key]
            if content is None:
                self._save_advisories(tx, bkt.bucket(key), names, vuln_id)
                continue
            try:
                detail = _decode_object(content)
            except ValueError as exc:
                raise DatabaseError(f"failed to unmarshall the advisory detail: {exc}") from exc
            try:
                self._put(tx, names, vuln_id, detail)
            except DatabaseError as exc:
                raise DatabaseError(f"database put error: {exc}") from exc

    def delete_advisory_detail_bucket(self) -> None:
        self._delete_bucket(_ADVISORY_DETAIL_BUCKET)

    # data sources

    def put_data_source(self, tx: Transaction, bkt_name: str, source: DataSource) -> None:
        try:
            bucket = tx.create_bucket_if_not_exists(_DATA_SOURCE_BUCKET)
            bucket.put(bkt_name, _encode(source))
        except (TypeError, ValueError) as exc:
            raise DatabaseError(f"failed to put data source '{bkt_name}': {exc}") from exc

    def _get_data_source(self, tx: Transaction, bkt_name: str) -> DataSource:
        bucket = tx.bucket(_DATA_SOURCE_BUCKET)
        if bucket is None:
            return DataSource()
        content = bucket.get(bkt_name)
        if content is None:
            return DataSource()
        try:
            return DataSource.from_dict(_decode_object(content))
        except (ValueError, TypeError) as exc:
            raise DatabaseError(f"JSON unmarshal error: {exc}") from exc

    # Red Hat CPE

    def put_red_hat_repositories(
        self, tx: Transaction, repository: str, cpe_indices: Sequence[int]
    ) -> None:
        try:
            self._put(
                tx, [_REDHAT_CPE_ROOT_BUCKET, _REDHAT_REPO_BUCKET], repository, list(cpe_indices)
            )
        except DatabaseError as exc:
            raise DatabaseError(f"Red Hat CPE error: {exc}") from exc

    def put_red_hat_nvrs(self, tx: Transaction, nvr: str, cpe_indices: Sequence[int]) -> None:
        try:
            self._put(tx, [_REDHAT_CPE_ROOT_BUCKET, _REDHAT_NVR_BUCKET], nvr, list(cpe_indices))
        except DatabaseError as exc:
            raise DatabaseError(f"Red Hat CPE error: {exc}") from exc

    def put_red_hat_cpes(self, tx: Transaction, cpe_index: int, cpe: str) -> None:
        try:
            self._put(tx, [_REDHAT_CPE_ROOT_BUCKET, _REDHAT_CPE_BUCKET], str(cpe_index), cpe)
        except DatabaseError as exc:
            raise DatabaseError(f"Red Hat CPE error: {exc}") from exc

    def red_hat_repo_to_cpes(self, repository: str) -> list[int]:
        return self._get_cpes(_REDHAT_REPO_BUCKET, repository)

    def red_hat_nvr_to_cpes(self, nvr: str) -> list[int]:
        return self._get_cpes(_REDHAT_NVR_BUCKET, nvr)

    def _get_cpes(self, bucket: str, key: str) -> list[int]:
        try:
            content = self._get([_REDHAT_CPE_ROOT_BUCKET, bucket], key)
        except DatabaseError as exc:
            raise DatabaseError(f"unable to get '{key}': {exc}") from exc
        if not content:
            return []
        try:
            cpes = json.loads(content)
        except ValueError as exc:
            raise DatabaseError(f"JSON unmarshal error: {exc}") from exc
        if cpes is None:
            return []
        if not isinstance(cpes, list) or not all(
            isinstance(item, int) and not isinstance(item, bool) for item in cpes
        ):
            raise DatabaseError(f"JSON unmarshal error: not a list of integers: {cpes!r}")
        return cpes

    # vulnerabilities

    def put_vulnerability(self, tx: Transaction, vuln_id: str, vuln: Vulnerability) -> None:
        try:
            self._put(tx, [_VULNERABILITY_BUCKET], vuln_id, vuln)
        except DatabaseError as exc:
            raise DatabaseError(f"failed to put severity: {exc}") from exc

    def get_vulnerability(self, vuln_id: str) -> Vulnerability:
        """Return the merged vulnerability *vuln_id*; raise DatabaseError if absent."""
        prefix = f'failed to get the vulnerability "{vuln_id}"'
        try:
            with _require_store().view() as tx:
                bucket = tx.bucket(_VULNERABILITY_BUCKET)
                content = bucket.get(vuln_id) if bucket is not None else None
        except ValueError as exc:
            raise DatabaseError(f"{prefix}: {exc}") from exc
        if content is None:
            raise DatabaseError(f"{prefix}: no vulnerability details for {vuln_id}")
        try:
            return Vulnerability.from_dict(_decode_object(content))
        except (ValueError, TypeError) as exc:
            raise DatabaseError(f"{prefix}: failed to unmarshal JSON: {exc}") from exc

    def put_vulnerability_detail(
        self, tx: Transaction, vuln_id: str, source: SourceID, vuln: VulnerabilityDetail
    ) -> None:
        try:
            self._put(tx, [_VULNERABILITY_DETAIL_BUCKET, vuln_id], str(source), vuln)
        except DatabaseError as exc:
            raise DatabaseError(f"failed to put vulnerability detail: {exc}") from exc

    def get_vulnerability_detail(self, vuln_id: str) -> dict[SourceID, VulnerabilityDetail]:
        """Details of *vuln_id* keyed by source."""
        try:
            values = self._for_each([_VULNERABILITY_DETAIL_BUCKET, vuln_id])
        except DatabaseError as exc:
            raise DatabaseError(f"error in NVD get: {exc}") from exc
        details: dict[SourceID, VulnerabilityDetail] = {}
        for source, value in values.items():
            try:
                details[source] = VulnerabilityDetail.from_dict(_decode_object(value.content))
            except (ValueError, TypeError) as exc:
                raise DatabaseError(f"failed to unmarshal Vulnerability JSON: {exc}") from exc
        return details

    def delete_vulnerability_detail_bucket(self) -> None:
        self._delete_bucket(_VULNERABILITY_DETAIL_BUCKET)

    # vulnerability IDs

    def put_vulnerability_id(self, tx: Transaction, vuln_id: str) -> None:
        try:
            bucket = tx.create_bucket_if_not_exists(_VULNERABILITY_ID_BUCKET)
            bucket.put(vuln_id, b"{}")
        except (TypeError, ValueError) as exc:
            raise DatabaseError(
                f"failed to create {_VULNERABILITY_ID_BUCKET} bucket: {exc}"
            ) from exc

    def for_each_vulnerability_id(self, fn: Callable[[Transaction, str], Any]) -> None:
        """Call fn(tx, vuln_id) for every stored vulnerability ID within one write transaction."""

        def walk(tx: Transaction) -> None:
            bucket = tx.bucket(_VULNERABILITY_ID_BUCKET)
            if bucket is None:
                raise DatabaseError(f"no such bucket: {_VULNERABILITY_ID_BUCKET}")
            for vuln_id, _ in bucket.items():
                try:
                    fn(tx, vuln_id)
                except Exception as exc:
                    raise DatabaseError(
                        f"error in for each: something wrong: {exc}"
                    ) from exc

        try:
            _require_store().batch(walk)
        except ValueError as exc:
            raise DatabaseError(str(exc)) from exc

    def delete_vulnerability_id_bucket(self) -> None:
        self._delete_bucket(_VULNERABILITY_ID_BUCKET)