"""Keyed document store used by every FocusFlow component.

A store hands out named collections of JSON-compatible dicts keyed by ``id``.
Each collection operation is atomic with respect to other operations on the
same collection. Multi-step invariants (count-then-insert, read-modify-write)
are serialised by the caller through ``store.lock(*key)``.

Filters are dicts of ``field -> value`` (equality) or
``field -> {"$gte"|"$gt"|"$lte"|"$lt"|"$ne"|"$in": value}``.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from focusflow.errors import NotFound, TransientStorageError, UnexpectedError
from focusflow.fileio import FileLock, read_json, write_json_atomic
from focusflow.workspace import collection_path, lock_dir

logger = logging.getLogger(__name__)

Document = dict[str, Any]
Filter = dict[str, Any]
Sort = list[tuple[str, int]]

LOCK_STRIPES = 32


# ── Query matching ────────────────────────────────────────────


def _compare(value: Any, op: str, operand: Any) -> bool:
    if op == "$ne":
        return value != operand
    if op == "$in":
        return value in operand
    if value is None:
        return False
    if op == "$gte":
        return value >= operand
    if op == "$gt":
        return value > operand
    if op == "$lte":
        return value <= operand
    if op == "$lt":
        return value < operand
    raise ValueError(f"Unsupported filter operator: {op}")


def matches(doc: Document, flt: Filter | None) -> bool:
    """True if ``doc`` satisfies every clause of ``flt``."""
    if not flt:
        return True
    for key, cond in flt.items():
        value = doc.get(key)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            for op, operand in cond.items():
                if not _compare(value, op, operand):
                    return False
        elif value != cond:
            return False
    return True


def _sort_key(field: str):
    # None sorts first regardless of direction of the other values
    def key(doc: Document) -> tuple[int, Any]:
        value = doc.get(field)
        return (0, "") if value is None else (1, value)
    return key


def _apply_sort(docs: list[Document], sort: Sort | None) -> list[Document]:
    if not sort:
        return docs
    for field, direction in reversed(sort):
        docs.sort(key=_sort_key(field), reverse=direction < 0)
    return docs


# ── Collection ────────────────────────────────────────────────


class Collection:
    """One named set of documents inside a store."""

    def __init__(self, store: DocumentStore, name: str):
        self.store = store
        self.name = name

    def find_one(self, flt: Filter | None = None) -> Document | None:
        with self.store._guard(self.name):
            for doc in self.store._read(self.name).values():
                if matches(doc, flt):
                    return copy.deepcopy(doc)
        return None

    def get(self, doc_id: str) -> Document | None:
        with self.store._guard(self.name):
            doc = self.store._read(self.name).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def find(
        self,
        flt: Filter | None = None,
        sort: Sort | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        with self.store._guard(self.name):
            docs = [copy.deepcopy(d) for d in self.store._read(self.name).values() if matches(d, flt)]
        docs = _apply_sort(docs, sort)
        if limit is not None:
            docs = docs[:limit]
        return docs

    def count(self, flt: Filter | None = None) -> int:
        with self.store._guard(self.name):
            return sum(1 for d in self.store._read(self.name).values() if matches(d, flt))

    def insert(self, doc: Document) -> Document:
        doc = copy.deepcopy(doc)
        if not doc.get("id"):
            doc["id"] = uuid.uuid4().hex
        with self.store._guard(self.name):
            docs = self.store._read(self.name)
            if doc["id"] in docs:
                raise UnexpectedError(f"Duplicate id in {self.name}: {doc['id']}")
            docs[doc["id"]] = doc
            self.store._write(self.name, docs)
        return copy.deepcopy(doc)

    def update(self, doc_id: str, patch: Document) -> Document | None:
        """Apply ``patch`` to one document. Returns the new document or None if absent."""
        with self.store._guard(self.name):
            docs = self.store._read(self.name)
            if doc_id not in docs:
                return None
            docs[doc_id] = {**docs[doc_id], **copy.deepcopy(patch), "id": doc_id}
            self.store._write(self.name, docs)
            return copy.deepcopy(docs[doc_id])

    def update_one(self, flt: Filter, patch: Document) -> Document | None:
        """Compare-and-set: patch the first document matching ``flt``, atomically."""
        with self.store._guard(self.name):
            docs = self.store._read(self.name)
            for doc_id, doc in docs.items():
                if matches(doc, flt):
                    docs[doc_id] = {**doc, **copy.deepcopy(patch), "id": doc_id}
                    self.store._write(self.name, docs)
                    return copy.deepcopy(docs[doc_id])
        return None

    def update_many(self, patches: list[tuple[str, Document]]) -> list[Document]:
        """Apply every patch or none of them."""
        with self.store._guard(self.name):
            docs = self.store._read(self.name)
            missing = [doc_id for doc_id, _ in patches if doc_id not in docs]
            if missing:
                raise NotFound(missing[0], message=f"{self.name}: missing document {missing[0]}")
            for doc_id, patch in patches:
                docs[doc_id] = {**docs[doc_id], **copy.deepcopy(patch), "id": doc_id}
            self.store._write(self.name, docs)
            return [copy.deepcopy(docs[doc_id]) for doc_id, _ in patches]

    def delete(self, doc_id: str) -> bool:
        with self.store._guard(self.name):
            docs = self.store._read(self.name)
            if doc_id not in docs:
                return False
            del docs[doc_id]
            self.store._write(self.name, docs)
            return True

    def delete_many(self, flt: Filter) -> int:
        """Remove every document matching ``flt`` in one write. Returns the count."""
        with self.store._guard(self.name):
            docs = self.store._read(self.name)
            kept = {doc_id: doc for doc_id, doc in docs.items() if not matches(doc, flt)}
            removed = len(docs) - len(kept)
            if removed:
                self.store._write(self.name, kept)
            return removed

    def delete_one(self, flt: Filter) -> Document | None:
        """Remove and return the first document matching ``flt``."""
        with self.store._guard(self.name):
            docs = self.store._read(self.name)
            for doc_id, doc in docs.items():
                if matches(doc, flt):
                    del docs[doc_id]
                    self.store._write(self.name, docs)
                    return copy.deepcopy(doc)
        return None


# ── Stores ────────────────────────────────────────────────────


class DocumentStore:
    """Base store: per-collection mutexes plus re-entrant per-key locks."""

    def __init__(self) -> None:
        self._collections: dict[str, Collection] = {}
        self._collection_mutexes: dict[str, threading.RLock] = {}
        self._key_locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        self._held = threading.local()

    def collection(self, name: str) -> Collection:
        with self._registry_lock:
            if name not in self._collections:
                self._collections[name] = Collection(self, name)
                self._collection_mutexes[name] = threading.RLock()
            return self._collections[name]

    @contextmanager
    def _guard(self, name: str) -> Iterator[None]:
        self.collection(name)
        with self._collection_mutexes[name]:
            yield

    @contextmanager
    def lock(self, *key: Any) -> Iterator[None]:
        """Serialise a multi-step operation on ``key`` (re-entrant per thread)."""
        name = ":".join(str(k) for k in key)
        with self._registry_lock:
            rlock = self._key_locks.setdefault(name, threading.RLock())
        held: dict[str, int] = getattr(self._held, "counts", None) or {}
        self._held.counts = held
        with rlock:
            outermost = held.get(name, 0) == 0
            held[name] = held.get(name, 0) + 1
            try:
                if outermost:
                    with self._outer_lock(tuple(str(k) for k in key)):
                        yield
                else:
                    yield
            finally:
                held[name] -= 1
                if held[name] == 0:
                    del held[name]

    @contextmanager
    def _outer_lock(self, key: tuple[str, ...]) -> Iterator[None]:
        yield

    def _read(self, name: str) -> dict[str, Document]:
        raise NotImplementedError

    def _write(self, name: str, docs: dict[str, Document]) -> None:
        raise NotImplementedError


class MemoryStore(DocumentStore):
    """Process-local store. Documents are deep-copied in and out."""

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, dict[str, Document]] = {}

    def _read(self, name: str) -> dict[str, Document]:
        return self._data.setdefault(name, {})

    def _write(self, name: str, docs: dict[str, Document]) -> None:
        self._data[name] = docs


class JsonFileStore(DocumentStore):
    """One JSON file per collection under ``<root>/data``.

    Writes go through the atomic temp-file + rename helper, so a collection
    file is either the old or the new version. Per-key locks also take an
    flock on a lock file so separate processes sharing the directory are
    serialised.

    Lock files are striped: each lock family (the first key part) gets at
    most ``lock_stripes`` files, however many users and days are locked.
    """

    def __init__(self, root: Path, lock_stripes: int = LOCK_STRIPES):
        super().__init__()
        self.root = root
        self.lock_stripes = lock_stripes
        self._stripe_locks: dict[tuple[str, int], FileLock] = {}
        self._stripe_holds: dict[tuple[str, int], int] = {}
        self._stripe_mutexes: dict[tuple[str, int], threading.Lock] = {}

    def _path(self, name: str) -> Path:
        return collection_path(name, self.root)

    def _read(self, name: str) -> dict[str, Document]:
        try:
            data = read_json(self._path(name))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to read collection %s: %s", name, e)
            raise TransientStorageError(f"Cannot read {name}: {e}") from e
        docs = data.get("documents", {}) if isinstance(data, dict) else {}
        return docs if isinstance(docs, dict) else {}

    def _write(self, name: str, docs: dict[str, Document]) -> None:
        try:
            write_json_atomic(self._path(name), {"documents": docs})
        except OSError as e:
            logger.warning("Failed to write collection %s: %s", name, e)
            raise TransientStorageError(f"Cannot write {name}: {e}") from e

    @contextmanager
    def _guard(self, name: str) -> Iterator[None]:
        with super()._guard(name):
            with self._outer_lock(("collection", name)):
                yield

    @contextmanager
    def _outer_lock(self, key: tuple[str, ...]) -> Iterator[None]:
        stripe = self._stripe(key)
        self._hold_stripe(stripe)
        try:
            yield
        finally:
            self._drop_stripe(stripe)

    def _stripe(self, key: tuple[str, ...]) -> tuple[str, int]:
        # keys sharing their first two parts (collection, user) share a stripe,
        # so nested locks of one user never wait on a stripe they already hold
        digest = hashlib.sha1(":".join(key[:2]).encode("utf-8")).digest()
        return key[0], int.from_bytes(digest[:4], "big") % self.lock_stripes

    def _hold_stripe(self, stripe: tuple[str, int]) -> None:
        """Take the stripe's flock once per process; later holders only count."""
        with self._stripe_mutex(stripe):
            if self._stripe_holds.get(stripe, 0) == 0:
                pool, index = stripe
                file_lock = FileLock(lock_dir(self.root) / f"{pool}-{index:02d}.lock")
                try:
                    file_lock.acquire()
                except OSError as e:
                    raise TransientStorageError(f"Cannot lock {pool}: {e}") from e
                self._stripe_locks[stripe] = file_lock
            self._stripe_holds[stripe] = self._stripe_holds.get(stripe, 0) + 1

    def _drop_stripe(self, stripe: tuple[str, int]) -> None:
        with self._stripe_mutex(stripe):
            self._stripe_holds[stripe] -= 1
            if self._stripe_holds[stripe] == 0:
                del self._stripe_holds[stripe]
                self._stripe_locks.pop(stripe).release()

    def _stripe_mutex(self, stripe: tuple[str, int]) -> threading.Lock:
        with self._registry_lock:
            return self._stripe_mutexes.setdefault(stripe, threading.Lock())
