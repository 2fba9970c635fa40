"""
Storage layer.

Workflows talk to storage only through the `Storage` and `Transaction`
protocols below. `FirestoreStorage` (see firebase_ops.py) is the production
backend; `InMemoryStorage` is used for local development and tests.
"""

import copy
import logging
import operator
import threading
import time
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple, TypeVar

from marketplace.core.errors import ConflictError, NotFoundError, TransactionAborted

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (field, operator, value), same operator names as Firestore
Filter = Tuple[str, str, Any]

USERS = "users"
FREELANCERS = "freelancers"
CLIENTS = "clients"
PROJECTS = "projects"
PROJECT_TRANSITIONS = "project_transitions"
APPLICATIONS = "applications"
MEETING_REQUESTS = "meeting_requests"
MEETINGS = "meetings"
RATINGS = "ratings"
UNIQUE_KEYS = "unique_keys"


def unique_key(constraint: str, *parts: str) -> str:
    """Document id of the guard record backing a uniqueness constraint."""
    return ":".join((constraint,) + tuple(str(p) for p in parts))


class ReadAfterWriteError(RuntimeError):
    """All reads in a transaction must happen before its first write."""


class Transaction(Protocol):
    """Handle passed to the callable given to `Storage.run_in_transaction`."""

    def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        ...

    def query(self, collection: str, filters: Iterable[Filter] = ()) -> List[Dict[str, Any]]:
        ...

    def create(self, collection: str, document_id: str, data: Dict[str, Any]) -> None:
        """Create a document; the transaction fails with ConflictError if it exists."""
        ...

    def set(self, collection: str, document_id: str, data: Dict[str, Any]) -> None:
        ...

    def update(self, collection: str, document_id: str, updates: Dict[str, Any]) -> None:
        ...


class Storage(Protocol):
    """Protocol for persistence backends."""

    def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        ...

    def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    def run_in_transaction(
        self,
        fn: Callable[[Transaction], T],
        timeout: Optional[float] = None,
    ) -> T:
        """
        Run `fn` inside one atomic transaction. Either every write made through
        the handle commits, or none does. Backends may call `fn` more than once
        when a concurrent transaction wins a conflict.
        """
        ...


_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda field_value, options: field_value in options,
    "not-in": lambda field_value, options: field_value not in options,
    "array_contains": lambda field_value, item: item in (field_value or []),
    "array_contains_any": lambda field_value, items: any(i in (field_value or []) for i in items),
}


def matches(document: Dict[str, Any], filters: Iterable[Filter]) -> bool:
    for field, op, value in filters:
        if op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")
        field_value = document.get(field)
        if field_value is None and op not in ("==", "!=", "in", "not-in"):
            return False
        if not _OPERATORS[op](field_value, value):
            return False
    return True


def _sort_key(field: str):
    # None sorts first, like missing fields in Firestore ordering
    return lambda doc: (doc.get(field) is not None, doc.get(field))


class InMemoryTransaction:
    """Buffers writes until commit; reads see the last committed state."""

    def __init__(self, collections: Dict[str, Dict[str, Dict[str, Any]]]):
        self._collections = collections
        self._writes: List[Tuple[str, str, str, Dict[str, Any]]] = []
        self._pending_creates: set = set()

    def _check_read(self):
        if self._writes:
            raise ReadAfterWriteError("Transactions require all reads to be executed before all writes.")

    def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        self._check_read()
        document = self._collections[collection].get(document_id)
        return copy.deepcopy(document) if document is not None else None

    def query(self, collection: str, filters: Iterable[Filter] = ()) -> List[Dict[str, Any]]:
        self._check_read()
        filters = list(filters)
        return [
            copy.deepcopy(doc)
            for doc in self._collections[collection].values()
            if matches(doc, filters)
        ]

    def create(self, collection: str, document_id: str, data: Dict[str, Any]) -> None:
        if document_id in self._collections[collection] or (collection, document_id) in self._pending_creates:
            raise ConflictError(f"Document {collection}/{document_id} already exists")
        self._pending_creates.add((collection, document_id))
        self._writes.append(("set", collection, document_id, copy.deepcopy(data)))

    def set(self, collection: str, document_id: str, data: Dict[str, Any]) -> None:
        self._writes.append(("set", collection, document_id, copy.deepcopy(data)))

    def update(self, collection: str, document_id: str, updates: Dict[str, Any]) -> None:
        if document_id not in self._collections[collection] and (collection, document_id) not in self._pending_creates:
            raise NotFoundError(f"Document {collection}/{document_id} not found")
        self._writes.append(("update", collection, document_id, copy.deepcopy(updates)))

    def commit(self) -> None:
        for kind, collection, document_id, data in self._writes:
            documents = self._collections[collection]
            if kind == "set":
                documents[document_id] = {**data, "id": document_id}
            else:
                documents[document_id].update(data)


class InMemoryStorage:
    """
    In-memory storage for testing and local development.

    Transactions are serialized by one process-wide lock, which gives
    serializable isolation. A transaction that raises leaves no trace.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._lock = threading.RLock()

    def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            document = self._collections[collection].get(document_id)
            return copy.deepcopy(document) if document is not None else None

    def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        filters = list(filters)
        with self._lock:
            results = [
                copy.deepcopy(doc)
                for doc in self._collections[collection].values()
                if matches(doc, filters)
            ]
        if order_by:
            results.sort(key=_sort_key(order_by), reverse=descending)
        if limit is not None:
            results = results[:limit]
        return results

    def run_in_transaction(
        self,
        fn: Callable[[Transaction], T],
        timeout: Optional[float] = None,
    ) -> T:
        deadline = time.monotonic() + timeout if timeout is not None else None
        if not self._lock.acquire(timeout=timeout if timeout is not None else -1):
            logger.warning("Transaction could not start within %.2fs", timeout)
            raise TransactionAborted("Timed out waiting for a concurrent transaction")
        try:
            transaction = InMemoryTransaction(self._collections)
            result = fn(transaction)
            if deadline is not None and time.monotonic() > deadline:
                logger.warning("Transaction exceeded its %.2fs deadline; rolling back", timeout)
                raise TransactionAborted("Transaction deadline exceeded")
            transaction.commit()
            return result
        finally:
            self._lock.release()
