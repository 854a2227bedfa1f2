"""Document store interface used by every handler.

Handlers talk to `DocumentStore`, never to the Firestore SDK directly, so the
store can be swapped for a test double. `FirestoreStore` is the production
implementation.

Write semantics:
- `set(..., merge=True)` is an upsert with field-level merge
- `update` fails if the document does not exist
- `WriteBatch.commit` applies every queued write or none of them
- `run_transaction` adds reads whose documents must not change before commit
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

logger = logging.getLogger("api.store")

Filter = Tuple[str, str, Any]
T = TypeVar("T")


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    value: int


@dataclass
class Document:
    id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self.data}


class WriteBatch:
    """Queued writes applied atomically by `commit`."""

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    def commit(self) -> None:
        raise NotImplementedError


class Transaction:
    """Reads then writes, committed together by `DocumentStore.run_transaction`.

    All reads must come before the first write. The writes apply only if
    nothing read was changed concurrently; otherwise the function is retried.
    """

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError


class DocumentStore:
    """Minimal key-document store contract."""

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def query(
        self,
        collection: str,
        where: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        raise NotImplementedError

    def new_id(self, collection: str) -> str:
        raise NotImplementedError

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = self.new_id(collection)
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    def batch(self) -> WriteBatch:
        raise NotImplementedError

    def run_transaction(self, func: Callable[[Transaction], T]) -> T:
        """Run `func` in a transaction and return its result.

        `func` may run more than once and must not have side effects outside
        the transaction. An exception from `func` aborts with nothing written.
        """
        raise NotImplementedError


# =============================================================================
# FIRESTORE
# =============================================================================

def _to_firestore_value(value: Any) -> Any:
    if value is SERVER_TIMESTAMP:
        return firestore.SERVER_TIMESTAMP
    if isinstance(value, Increment):
        return firestore.Increment(value.value)
    if isinstance(value, dict):
        return {k: _to_firestore_value(v) for k, v in value.items()}
    return value


class FirestoreWriteBatch(WriteBatch):
    def __init__(self, client: firestore.Client) -> None:
        self._client = client
        self._batch = client.batch()

    def _ref(self, collection: str, doc_id: str):
        return self._client.collection(collection).document(doc_id)

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        self._batch.set(self._ref(collection, doc_id), _to_firestore_value(data), merge=merge)

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._batch.update(self._ref(collection, doc_id), _to_firestore_value(data))

    def delete(self, collection: str, doc_id: str) -> None:
        self._batch.delete(self._ref(collection, doc_id))

    def commit(self) -> None:
        self._batch.commit()


class FirestoreTransaction(Transaction):
    def __init__(self, client: firestore.Client, transaction: firestore.Transaction) -> None:
        self._client = client
        self._transaction = transaction

    def _ref(self, collection: str, doc_id: str):
        return self._client.collection(collection).document(doc_id)

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        snap = self._ref(collection, doc_id).get(transaction=self._transaction)
        if not snap.exists:
            return None
        return snap.to_dict() or {}

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        self._transaction.set(self._ref(collection, doc_id), _to_firestore_value(data), merge=merge)

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._transaction.update(self._ref(collection, doc_id), _to_firestore_value(data))

    def delete(self, collection: str, doc_id: str) -> None:
        self._transaction.delete(self._ref(collection, doc_id))


class FirestoreStore(DocumentStore):
    def __init__(self, client: firestore.Client) -> None:
        self._client = client

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        snap = self._client.collection(collection).document(doc_id).get()
        if not snap.exists:
            return None
        return snap.to_dict() or {}

    def query(
        self,
        collection: str,
        where: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        query = self._client.collection(collection)
        for field_path, op, value in where:
            query = query.where(filter=FieldFilter(field_path, op, value))
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        if limit:
            query = query.limit(limit)
        return [Document(id=snap.id, data=snap.to_dict() or {}) for snap in query.stream()]

    def new_id(self, collection: str) -> str:
        return self._client.collection(collection).document().id

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        self._client.collection(collection).document(doc_id).set(_to_firestore_value(data), merge=merge)

    def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._client.collection(collection).document(doc_id).update(_to_firestore_value(data))

    def delete(self, collection: str, doc_id: str) -> None:
        self._client.collection(collection).document(doc_id).delete()

    def batch(self) -> WriteBatch:
        return FirestoreWriteBatch(self._client)

    def run_transaction(self, func: Callable[[Transaction], T]) -> T:
        client = self._client

        @firestore.transactional
        def _run(transaction):
            return func(FirestoreTransaction(client, transaction))

        return _run(client.transaction())
