"""A small transactional store of nested key/value buckets kept in one file."""

from __future__ import annotations

import base64
import json
import os
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TypeVar

_FORMAT = "advisorydb-store"
_FORMAT_VERSION = 1
_MAX_KEY_SIZE = 32768

R = TypeVar("R")


def _byte_order(name: str) -> bytes:
    return name.encode("utf-8")


def _check_key(key: str) -> None:
    if not isinstance(key, str):
        raise TypeError("key must be a string")
    if not key:
        raise ValueError("key required")
    if len(key.encode("utf-8")) > _MAX_KEY_SIZE:
        raise ValueError("key too large")


class _Node:
    """Storage of one bucket: nested buckets and plain values."""

    __slots__ = ("buckets", "values")

    def __init__(
        self,
        buckets: dict[str, _Node] | None = None,
        values: dict[str, bytes] | None = None,
    ) -> None:
        self.buckets: dict[str, _Node] = buckets if buckets is not None else {}
        self.values: dict[str, bytes] = values if values is not None else {}

    def copy(self) -> _Node:
        return _Node(
            {name: child.copy() for name, child in self.buckets.items()},
            dict(self.values),
        )

    def dump(self) -> dict[str, Any]:
        return {
            "buckets": {name: child.dump() for name, child in self.buckets.items()},
            "values": {
                key: base64.b64encode(value).decode("ascii")
                for key, value in self.values.items()
            },
        }

    @classmethod
    def load(cls, data: Any) -> _Node:
        if not isinstance(data, dict):
            raise ValueError("malformed bucket")
        buckets = data.get("buckets", {})
        values = data.get("values", {})
        if not isinstance(buckets, dict) or not isinstance(values, dict):
            raise ValueError("malformed bucket")
        decoded: dict[str, bytes] = {}
        for key, text in values.items():
            if not isinstance(text, str):
                raise ValueError(f"malformed value for {key!r}")
            decoded[key] = base64.b64decode(text, validate=True)
        node = cls({name: cls.load(child) for name, child in buckets.items()}, decoded)
        if node.buckets.keys() & node.values.keys():
            raise ValueError("a key is both a bucket and a value")
        return node


class _Container:
    def __init__(self, node: _Node, writable: bool) -> None:
        self._node = node
        self._writable = writable

    @property
    def writable(self) -> bool:
        return self._writable

    def _check_writable(self) -> None:
        if not self._writable:
            raise ValueError("transaction not writable")

    def _child(self, name: str) -> Bucket | None:
        child = self._node.buckets.get(name)
        return None if child is None else Bucket(child, self._writable)

    def _create_child(self, name: str) -> Bucket:
        self._check_writable()
        _check_key(name)
        if name in self._node.values:
            raise ValueError(f"incompatible value: {name!r} holds a value")
        child = self._node.buckets.setdefault(name, _Node())
        return Bucket(child, True)


class Bucket(_Container):
    """A bucket holding values and nested buckets."""

    def bucket(self, name: str) -> Bucket | None:
        """Return the nested bucket *name*, or None if there is none."""
        return self._child(name)

    def create_bucket_if_not_exists(self, name: str) -> Bucket:
        """Return the nested bucket *name*, creating it when missing."""
        return self._create_child(name)

    def put(self, key: str, value: bytes) -> None:
        """Store *value* under *key*."""
        self._check_writable()
        _check_key(key)
        if key in self._node.buckets:
            raise ValueError(f"incompatible value: {key!r} is a bucket")
        self._node.values[key] = bytes(value)

    def get(self, key: str) -> bytes | None:
        """Return the value under *key*; None if missing or a bucket."""
        return self._node.values.get(key)

    def items(self) -> Iterator[tuple[str, bytes | None]]:
        """Yield (key, value) in byte order; nested buckets come with value None."""
        entries: list[tuple[str, bytes | None]] = [
            *((name, None) for name in self._node.buckets),
            *self._node.values.items(),
        ]
        entries.sort(key=lambda entry: _byte_order(entry[0]))
        yield from entries


class Transaction(_Container):
    """A view of the store's top-level buckets."""

    def bucket(self, name: str) -> Bucket | None:
        """Return the top-level bucket *name*, or None if there is none."""
        return self._child(name)

    def create_bucket_if_not_exists(self, name: str) -> Bucket:
        """Return the top-level bucket *name*, creating it when missing."""
        return self._create_child(name)

    def delete_bucket(self, name: str) -> None:
        """Remove the top-level bucket *name* and everything under it."""
        self._check_writable()
        if name not in self._node.buckets:
            raise KeyError(f"bucket not found: {name}")
        del self._node.buckets[name]

    def bucket_names(self, prefix: str = "") -> list[str]:
        """Names of top-level buckets starting with *prefix*, in byte order."""
        return sorted(
            (name for name in self._node.buckets if name.startswith(prefix)),
            key=_byte_order,
        )


def _decode(raw: bytes) -> _Node:
    try:
        doc = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(f"invalid database file: {exc}") from exc
    if not isinstance(doc, dict) or doc.get("format") != _FORMAT:
        raise ValueError("invalid database file: unknown format")
    if doc.get("version") != _FORMAT_VERSION:
        raise ValueError(f"unsupported database version: {doc.get('version')!r}")
    try:
        root = _Node.load(doc.get("root"))
    except TypeError as exc:
        raise ValueError(f"invalid database file: {exc}") from exc
    if root.values:
        raise ValueError("invalid database file: values at the top level")
    return root


def _write(path: str, root: _Node) -> None:
    data = json.dumps(
        {"format": _FORMAT, "version": _FORMAT_VERSION, "root": root.dump()},
        separators=(",", ":"),
    ).encode("utf-8")
    tmp = f"{path}.tmp"
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)
    os.replace(tmp, path)


class Store:
    """A file-backed store; changes are written to disk when a write transaction ends."""

    def __init__(self, path: str, root: _Node) -> None:
        self._path = path
        self._root = root
        self._closed = False
        self._lock = threading.RLock()

    @property
    def path(self) -> str:
        return self._path

    @classmethod
    def open(cls, path: str | os.PathLike[str]) -> Store:
        """Open the store at *path*, creating it if absent; ValueError if the file is corrupt."""
        path = os.fspath(path)
        try:
            with open(path, "rb") as handle:
                raw = handle.read()
        except FileNotFoundError:
            raw = b""
        if raw:
            root = _decode(raw)
        else:
            root = _Node()
            _write(path, root)
        return cls(path, root)

    def close(self) -> None:
        self._closed = True

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("database not open")

    @contextmanager
    def view(self) -> Iterator[Transaction]:
        """A read-only transaction."""
        self._check_open()
        with self._lock:
            yield Transaction(self._root, writable=False)

    @contextmanager
    def update(self) -> Iterator[Transaction]:
        """A write transaction, committed on normal exit and discarded on error."""
        self._check_open()
        with self._lock:
            working = self._root.copy()
            yield Transaction(working, writable=True)
            _write(self._path, working)
            self._root = working

    def batch(self, fn: Callable[[Transaction], R]) -> R:
        """Run *fn* in a write transaction and return its result."""
        with self.update() as tx:
            return fn(tx)