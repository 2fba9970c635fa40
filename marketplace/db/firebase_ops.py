import logging
import os
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from marketplace.core.config import Settings, get_settings
from marketplace.core.errors import ConflictError, NotFoundError, TransactionAborted
from marketplace.db.storage import Filter, Transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FirebaseManager:
    """
    Firebase Admin SDK bootstrap. Holds one Firestore client per process.
    """
    _instance = None
    _db = None

    def __new__(cls, settings: Optional[Settings] = None):
        if cls._instance is None:
            cls._instance = super(FirebaseManager, cls).__new__(cls)
        return cls._instance

    def __init__(self, settings: Optional[Settings] = None):
        if self._db is None:
            self.initialize_firebase(settings or get_settings())

    def initialize_firebase(self, settings: Settings):
        """Initialize Firebase Admin SDK"""
        try:
            app = firebase_admin.get_app()
            logger.info("Using existing Firebase app")
        except ValueError:
            # App doesn't exist, so we need to initialize it
            options = {"projectId": settings.firebase_project_id} if settings.firebase_project_id else None
            service_account_path = settings.firebase_credentials_path
            if service_account_path and os.path.exists(service_account_path):
                cred = credentials.Certificate(service_account_path)
                logger.info("Firebase initialized with service account key from %s", service_account_path)
            else:
                cred = credentials.ApplicationDefault()
                logger.info("Firebase initialized with application default credentials")
            app = firebase_admin.initialize_app(cred, options)

        self._db = firestore.client(app)

    def get_db(self):
        """Get Firestore database client"""
        return self._db


def _snapshot_to_dict(snapshot) -> Optional[Dict[str, Any]]:
    if not snapshot.exists:
        return None
    return {**snapshot.to_dict(), "id": snapshot.id}


def _apply_filters(query, filters: Iterable[Filter]):
    for field, op, value in filters:
        query = query.where(filter=FieldFilter(field, op, value))
    return query


class FirestoreTransaction:
    """
    Adapts a Firestore server transaction to the `Transaction` protocol.
    Documents read here are locked until the transaction commits or aborts.
    """

    def __init__(self, db, transaction, timeout: Optional[float] = None):
        self._db = db
        self._transaction = transaction
        self._kwargs = {"timeout": timeout} if timeout is not None else {}

    def _ref(self, collection: str, document_id: str):
        return self._db.collection(collection).document(document_id)

    def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        snapshot = self._ref(collection, document_id).get(transaction=self._transaction, **self._kwargs)
        return _snapshot_to_dict(snapshot)

    def query(self, collection: str, filters: Iterable[Filter] = ()) -> List[Dict[str, Any]]:
        query = _apply_filters(self._db.collection(collection), filters)
        return [
            _snapshot_to_dict(snapshot)
            for snapshot in query.stream(transaction=self._transaction, **self._kwargs)
        ]

    def create(self, collection: str, document_id: str, data: Dict[str, Any]) -> None:
        self._transaction.create(self._ref(collection, document_id), {**data, "id": document_id})

    def set(self, collection: str, document_id: str, data: Dict[str, Any]) -> None:
        self._transaction.set(self._ref(collection, document_id), {**data, "id": document_id})

    def update(self, collection: str, document_id: str, updates: Dict[str, Any]) -> None:
        self._transaction.update(self._ref(collection, document_id), updates)


class FirestoreStorage:
    """
    Storage backed by Cloud Firestore.

    `run_in_transaction` uses Firestore server transactions: reads take
    document locks, commits are atomic, and the callable is re-run when a
    concurrent transaction commits first, so a losing caller re-reads the
    winner's state.
    """

    def __init__(self, db, max_attempts: int = 5):
        self._db = db
        self._max_attempts = max_attempts

    def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        snapshot = self._db.collection(collection).document(document_id).get()
        return _snapshot_to_dict(snapshot)

    def query(
        self,
        collection: str,
        filters: Iterable[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        query = _apply_filters(self._db.collection(collection), filters)
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        if limit is not None:
            query = query.limit(limit)
        return [_snapshot_to_dict(snapshot) for snapshot in query.stream()]

    def run_in_transaction(
        self,
        fn: Callable[[Transaction], T],
        timeout: Optional[float] = None,
    ) -> T:
        transaction = self._db.transaction(max_attempts=self._max_attempts)

        @firestore.transactional
        def _run(transaction):
            return fn(FirestoreTransaction(self._db, transaction, timeout))

        try:
            return _run(transaction)
        except google_exceptions.AlreadyExists as e:
            raise ConflictError("A record with the same unique key already exists") from e
        except google_exceptions.NotFound as e:
            raise NotFoundError("Record not found") from e
        except (google_exceptions.DeadlineExceeded, google_exceptions.Cancelled) as e:
            logger.warning("Firestore transaction aborted: %s", e)
            raise TransactionAborted("Storage transaction was cancelled or timed out") from e


def get_firestore_storage(settings: Optional[Settings] = None) -> FirestoreStorage:
    return FirestoreStorage(FirebaseManager(settings).get_db())
