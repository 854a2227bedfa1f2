"""In-memory DocumentStore for tests.

Batches stage every write on a copy and swap it in only when all writes
succeed. `fail_commit_at = n` makes the n-th write of the next batch raise.
Transactions run one at a time and commit their writes as one batch.
"""

from __future__ import annotations

import copy
import itertools
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from xscard_api.store import SERVER_TIMESTAMP, Document, DocumentStore, Filter, Increment, Transaction, WriteBatch

Collections = Dict[str, Dict[str, Dict[str, Any]]]

_OPS = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a is not None and a < b,
    "<=": lambda a, b: a is not None and a <= b,
    ">": lambda a, b: a is not None and a > b,
    ">=": lambda a, b: a is not None and a >= b,
    "in": lambda a, b: a in b,
    "array_contains": lambda a, b: isinstance(a, list) and b in a,
}


class InjectedWriteError(RuntimeError):
    pass


def _resolve(value: Any, existing: Any = None) -> Any:
    if value is SERVER_TIMESTAMP:
        return datetime.now(timezone.utc)
    if isinstance(value, Increment):
        return (existing or 0) + value.value
    if isinstance(value, dict):
        prior = existing if isinstance(existing, dict) else {}
        return {k: _resolve(v, prior.get(k)) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve(v) for v in value]
    return copy.deepcopy(value)


def _merge(existing: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(existing)
    for key, value in data.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = _resolve(value, merged.get(key))
    return merged


def _apply(collections: Collections, op: tuple) -> None:
    kind, collection, doc_id, data, merge = op
    docs = collections.setdefault(collection, {})
    if kind == "set":
        if merge and doc_id in docs:
            docs[doc_id] = _merge(docs[doc_id], data)
        else:
            docs[doc_id] = _resolve(data)
    elif kind == "update":
        if doc_id not in docs:
            raise LookupError(f"No document to update: {collection}/{doc_id}")
        current = docs[doc_id]
        for key, value in data.items():
            current[key] = _resolve(value, current.get(key))
    elif kind == "delete":
        docs.pop(doc_id, None)


class MemoryWriteBatch(WriteBatch):
    def __init__(self, store: "MemoryStore") -> None:
        self._store = store
        self._ops: List[tuple] = []

    def set(self, collection, doc_id, data, merge=False):
        self._ops.append(("set", collection, doc_id, data, merge))

    def update(self, collection, doc_id, data):
        self._ops.append(("update", collection, doc_id, data, False))

    def delete(self, collection, doc_id):
        self._ops.append(("delete", collection, doc_id, None, False))

    def commit(self):
        staged = copy.deepcopy(self._store.collections)
        for position, op in enumerate(self._ops, start=1):
            if self._store.fail_commit_at == position:
                raise InjectedWriteError(f"injected failure on write {position}")
            _apply(staged, op)
        self._store.collections = staged
        self._store.committed_batches += 1


class MemoryTransaction(Transaction):
    """Reads see committed state; writes are staged and committed as a batch."""

    def __init__(self, store: "MemoryStore") -> None:
        self._store = store
        self._writes = MemoryWriteBatch(store)

    def get(self, collection, doc_id):
        return self._store.get(collection, doc_id)

    def set(self, collection, doc_id, data, merge=False):
        self._writes.set(collection, doc_id, data, merge)

    def update(self, collection, doc_id, data):
        self._writes.update(collection, doc_id, data)

    def delete(self, collection, doc_id):
        self._writes.delete(collection, doc_id)

    def commit(self):
        self._writes.commit()


class MemoryStore(DocumentStore):
    def __init__(self) -> None:
        self.collections: Collections = {}
        self.fail_commit_at: Optional[int] = None
        self.committed_batches = 0
        self.committed_transactions = 0
        self._ids = itertools.count(1)
        # transactions are serialised, so reads cannot go stale before commit
        self._lock = threading.RLock()

    # test helpers

    def seed(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self.collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    def all(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self.collections.get(collection, {}))

    def snapshot(self) -> Collections:
        return copy.deepcopy(self.collections)

    # DocumentStore

    def get(self, collection, doc_id):
        doc = self.collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def query(
        self,
        collection: str,
        where: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        docs = [
            Document(id=doc_id, data=copy.deepcopy(data))
            for doc_id, data in self.collections.get(collection, {}).items()
            if all(_OPS[op](data.get(field), value) for field, op, value in where)
        ]
        if order_by:
            # Firestore drops documents missing the ordered field
            docs = [d for d in docs if d.data.get(order_by) is not None]
            docs.sort(key=lambda d: d.data[order_by], reverse=descending)
        if limit:
            docs = docs[:limit]
        return docs

    def new_id(self, collection):
        return f"{collection}-{next(self._ids)}"

    def set(self, collection, doc_id, data, merge=False):
        _apply(self.collections, ("set", collection, doc_id, data, merge))

    def update(self, collection, doc_id, data):
        _apply(self.collections, ("update", collection, doc_id, data, False))

    def delete(self, collection, doc_id):
        _apply(self.collections, ("delete", collection, doc_id, None, False))

    def batch(self):
        return MemoryWriteBatch(self)

    def run_transaction(self, func):
        with self._lock:
            transaction = MemoryTransaction(self)
            result = func(transaction)
            transaction.commit()
            self.committed_transactions += 1
            return result
