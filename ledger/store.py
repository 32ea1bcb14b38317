"""
Transactional document store with optimistic concurrency.

Documents are dicts addressed by slash-separated paths
(``users/u1``, ``chat_rooms/r1/messages/m1``). Every document carries a
version that is bumped on each committed write; every collection carries a
scope version bumped whenever any document in it changes.

A transaction records the version of everything it reads (documents and
query scopes) and buffers its writes. At commit the store re-checks those
versions; if any moved, the attempt is discarded and the body runs again.
There are no locks held across a transaction body. The only mutual exclusion
is the short commit latch that makes validate-and-apply atomic.
"""

import copy
import fnmatch
import logging
import operator
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, TypeVar
from uuid import uuid4

logger = logging.getLogger(__name__)

T = TypeVar("T")
Where = tuple[str, str, Any]


class LedgerStoreError(Exception):
    pass


class TransactionConflict(LedgerStoreError):
    def __init__(self, path: str):
        super().__init__(f"Stale read on {path}")
        self.path = path


class TransactionAborted(LedgerStoreError):
    pass


class TransactionStateError(LedgerStoreError):
    pass


class DocumentNotFound(LedgerStoreError):
    pass


class DocumentExists(LedgerStoreError):
    pass


def split_path(path: str) -> tuple[str, str]:
    parts = path.strip("/").split("/")
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


def collection_id(collection_path: str) -> str:
    return collection_path.rsplit("/", 1)[-1]


def _contains(container: Any, value: Any) -> bool:
    return isinstance(container, (list, tuple, set)) and value in container


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda actual, values: actual in values,
    "array-contains": _contains,
}


def matches(data: dict, where: Iterable[Where]) -> bool:
    # A missing field never matches, same as a range filter on null.
    for field, op, value in where:
        if field not in data:
            return False
        try:
            if not _OPERATORS[op](data[field], value):
                return False
        except TypeError:
            return False
    return True


@dataclass(frozen=True)
class DocumentSnapshot:
    path: str
    data: Optional[dict]
    version: int

    @property
    def id(self) -> str:
        return split_path(self.path)[1]

    @property
    def collection(self) -> str:
        return split_path(self.path)[0]

    @property
    def exists(self) -> bool:
        return self.data is not None

    def to_dict(self) -> Optional[dict]:
        return copy.deepcopy(self.data) if self.data is not None else None

    def get(self, field: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return copy.deepcopy(self.data.get(field, default))


class WriteBatch:
    """Atomic group of writes with no reads. Used for sweeps and seeding."""

    def __init__(self, store: "InMemoryDocumentStore"):
        self._store = store
        self._writes: list[tuple[str, str, Optional[dict]]] = []
        self._committed = False

    def _ensure_open(self) -> None:
        if self._committed:
            raise TransactionStateError("Batch already committed")

    def create(self, path: str, data: dict) -> None:
        self._ensure_open()
        split_path(path)
        self._writes.append(("create", path, data))

    def set(self, path: str, data: dict) -> None:
        self._ensure_open()
        split_path(path)
        self._writes.append(("set", path, data))

    def update(self, path: str, fields: dict) -> None:
        self._ensure_open()
        self._writes.append(("update", path, fields))

    def delete(self, path: str) -> None:
        self._ensure_open()
        self._writes.append(("delete", path, None))

    def __len__(self) -> int:
        return len(self._writes)

    def commit(self) -> None:
        self._ensure_open()
        self._committed = True
        self._store._commit({}, {}, self._writes)


class Transaction(WriteBatch):
    """One attempt of a transaction body. Reads must come before writes."""

    def __init__(self, store: "InMemoryDocumentStore"):
        super().__init__(store)
        self._reads: dict[str, DocumentSnapshot] = {}
        self._scopes: dict[tuple[str, str], int] = {}

    def _ensure_reading(self) -> None:
        self._ensure_open()
        if self._writes:
            raise TransactionStateError("Transactions require all reads to be executed before all writes")

    def get(self, path: str) -> DocumentSnapshot:
        self._ensure_reading()
        if path not in self._reads:
            self._reads[path] = self._store.get(path)
        return self._reads[path]

    def query(self, collection: str, where: Iterable[Where] = ()) -> list[DocumentSnapshot]:
        self._ensure_reading()
        return self._record_scan(("collection", collection), where)

    def query_group(self, collection: str, where: Iterable[Where] = ()) -> list[DocumentSnapshot]:
        self._ensure_reading()
        return self._record_scan(("group", collection), where)

    def _record_scan(self, scope: tuple[str, str], where: Iterable[Where]) -> list[DocumentSnapshot]:
        version, snapshots = self._store._scan(scope, list(where))
        self._scopes.setdefault(scope, version)
        for snapshot in snapshots:
            self._reads.setdefault(snapshot.path, snapshot)
        return [self._reads[s.path] for s in snapshots]

    def is_stale(self) -> bool:
        return self._store._first_stale(self._reads, self._scopes) is not None

    def commit(self) -> None:
        self._ensure_open()
        self._committed = True
        self._store._commit(self._reads, self._scopes, self._writes)


Listener = Callable[[DocumentSnapshot], None]


class InMemoryDocumentStore:
    def __init__(self, max_attempts: int = 5, base_delay_ms: int = 5, max_delay_ms: int = 200):
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._docs: dict[str, dict] = {}
        self._versions: dict[str, int] = {}
        self._scope_versions: dict[tuple[str, str], int] = {}
        self._listeners: list[tuple[str, Listener]] = []
        self._latch = threading.Lock()

    @staticmethod
    def new_id() -> str:
        return uuid4().hex

    # Reads

    def get(self, path: str) -> DocumentSnapshot:
        split_path(path)
        with self._latch:
            return self._snapshot(path)

    def query(self, collection: str, where: Iterable[Where] = ()) -> list[DocumentSnapshot]:
        return self._scan(("collection", collection), list(where))[1]

    def query_group(self, collection: str, where: Iterable[Where] = ()) -> list[DocumentSnapshot]:
        return self._scan(("group", collection), list(where))[1]

    def _snapshot(self, path: str) -> DocumentSnapshot:
        data = self._docs.get(path)
        return DocumentSnapshot(
            path=path,
            data=copy.deepcopy(data) if data is not None else None,
            version=self._versions.get(path, 0),
        )

    def _scan(self, scope: tuple[str, str], where: list[Where]) -> tuple[int, list[DocumentSnapshot]]:
        kind, name = scope
        with self._latch:
            found = []
            for path in sorted(self._docs):
                parent = split_path(path)[0]
                in_scope = parent == name if kind == "collection" else collection_id(parent) == name
                if in_scope and matches(self._docs[path], where):
                    found.append(self._snapshot(path))
            return self._scope_versions.get(scope, 0), found

    # Single writes

    def create(self, path: str, data: dict) -> None:
        batch = self.batch()
        batch.create(path, data)
        batch.commit()

    def set(self, path: str, data: dict) -> None:
        batch = self.batch()
        batch.set(path, data)
        batch.commit()

    def update(self, path: str, fields: dict) -> None:
        batch = self.batch()
        batch.update(path, fields)
        batch.commit()

    def delete(self, path: str) -> None:
        batch = self.batch()
        batch.delete(path)
        batch.commit()

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    # Transactions

    def run_transaction(self, body: Callable[[Transaction], T], max_attempts: Optional[int] = None) -> T:
        """Run ``body`` until it commits against an unchanged read set.

        A body that raises aborts the attempt without writing anything. The
        exception propagates unless the attempt had already gone stale, in
        which case it may stem from an inconsistent view and the body is
        retried instead.
        """
        attempts = max_attempts or self.max_attempts
        for attempt in range(1, attempts + 1):
            txn = Transaction(self)
            try:
                result = body(txn)
                txn.commit()
                return result
            except TransactionConflict as exc:
                logger.debug(
                    f"Transaction conflict on {exc.path} ({attempt}/{attempts})",
                    extra={"attempt": attempt, "path": exc.path},
                )
            except Exception:
                if not txn.is_stale():
                    raise
                logger.debug(f"Retrying body that failed on a stale view ({attempt}/{attempts})",
                             extra={"attempt": attempt})
            if attempt < attempts:
                self._backoff(attempt)
        raise TransactionAborted(f"Transaction aborted after {attempts} attempts")

    def _backoff(self, attempt: int) -> None:
        delay_ms = min(self.max_delay_ms, self.base_delay_ms * 2 ** (attempt - 1))
        if delay_ms:
            time.sleep(delay_ms * random.uniform(0.5, 1.0) / 1000)

    def _first_stale(self, reads: dict[str, DocumentSnapshot], scopes: dict[tuple[str, str], int]) -> Optional[str]:
        with self._latch:
            return self._first_stale_locked(reads, scopes)

    def _first_stale_locked(self, reads: dict[str, DocumentSnapshot], scopes: dict[tuple[str, str], int]) -> Optional[str]:
        for path, snapshot in reads.items():
            if self._versions.get(path, 0) != snapshot.version:
                return path
        for scope, version in scopes.items():
            if self._scope_versions.get(scope, 0) != version:
                return "/".join(scope)
        return None

    def _commit(self, reads: dict[str, DocumentSnapshot], scopes: dict[tuple[str, str], int],
                writes: list[tuple[str, str, Optional[dict]]]) -> None:
        with self._latch:
            stale = self._first_stale_locked(reads, scopes)
            if stale is not None:
                raise TransactionConflict(stale)

            staged: dict[str, Optional[dict]] = {}
            for kind, path, data in writes:
                current = staged[path] if path in staged else self._docs.get(path)
                if kind == "create":
                    if current is not None:
                        raise DocumentExists(f"Document already exists: {path}")
                    staged[path] = copy.deepcopy(data)
                elif kind == "set":
                    staged[path] = copy.deepcopy(data)
                elif kind == "update":
                    if current is None:
                        raise DocumentNotFound(f"No document to update: {path}")
                    merged = dict(current)
                    merged.update(copy.deepcopy(data))
                    staged[path] = merged
                else:
                    staged[path] = None

            created = []
            for path, data in staged.items():
                existed = path in self._docs
                if data is None:
                    self._docs.pop(path, None)
                else:
                    self._docs[path] = data
                    if not existed:
                        created.append(path)
                self._versions[path] = self._versions.get(path, 0) + 1
                parent = split_path(path)[0]
                for scope in (("collection", parent), ("group", collection_id(parent))):
                    self._scope_versions[scope] = self._scope_versions.get(scope, 0) + 1
            created_snapshots = [self._snapshot(path) for path in created]

        self._notify(created_snapshots)

    # On-create listeners

    def listen(self, collection_pattern: str, callback: Listener) -> None:
        self._listeners.append((collection_pattern, callback))

    def _notify(self, snapshots: list[DocumentSnapshot]) -> None:
        for snapshot in snapshots:
            for pattern, callback in list(self._listeners):
                if not fnmatch.fnmatchcase(snapshot.collection, pattern):
                    continue
                try:
                    callback(snapshot)
                except Exception:
                    logger.exception(f"On-create listener failed for {snapshot.path}",
                                     extra={"path": snapshot.path})
