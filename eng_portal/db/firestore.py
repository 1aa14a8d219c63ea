import os
import logging
from functools import wraps
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import firebase_admin
from firebase_admin import credentials, firestore
from firebase_admin.exceptions import FirebaseError
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud.firestore_v1.base_query import FieldFilter

from eng_portal import config
from eng_portal.core.errors import StorageUnavailable

logger = logging.getLogger("engportal.db")

# (field, op, value), e.g. ("audience", "in", ["all", "E-TOOL", uid])
Filter = Tuple[str, str, Any]
Document = Tuple[str, Dict[str, Any]]


def initialize_app():
    if not firebase_admin._apps:
        # 1. Local Dev: Use Key File if it exists
        if config.SA_KEY_PATH and os.path.exists(config.SA_KEY_PATH):
            cred = credentials.Certificate(config.SA_KEY_PATH)
            firebase_admin.initialize_app(cred, {"projectId": config.PROJECT_ID})
            logger.info("Connected to Firebase (key file): %s", config.PROJECT_ID)

        # 2. Production (Cloud Run): Use Default Identity
        else:
            firebase_admin.initialize_app(options={"projectId": config.PROJECT_ID})
            logger.info("Connected to Firebase (ADC): %s", config.PROJECT_ID)
    return firebase_admin.get_app()


def initialize_db():
    initialize_app()
    return firestore.client()


def _storage_errors(func):
    """Turns SDK failures into StorageUnavailable; domain errors pass through untouched."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (GoogleAPIError, GoogleAuthError, FirebaseError) as e:
            logger.error("Firestore call %s failed: %s", func.__name__, e)
            raise StorageUnavailable(cause=e) from e
    return wrapper


class FirestoreTransaction:
    """The view of the store handed to a run_transaction callback."""

    def __init__(self, client, transaction):
        self._client = client
        self._txn = transaction

    def _ref(self, collection: str, doc_id: str):
        return self._client.collection(collection).document(doc_id)

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        snap = self._ref(collection, doc_id).get(transaction=self._txn)
        return snap.to_dict() if snap.exists else None

    def set(self, collection: str, doc_id: str, fields: Dict[str, Any], merge: bool = False):
        self._txn.set(self._ref(collection, doc_id), fields, merge=merge)

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]):
        self._txn.update(self._ref(collection, doc_id), fields)


class FirestoreStore:
    """Document store over the Firestore admin client."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = initialize_db()
            except ValueError as e:
                # Missing project id or an unreadable key file.
                logger.error("Firestore client could not be created: %s", e)
                raise StorageUnavailable("Firestore is not configured.", cause=e) from e
        return self._client

    def _query(self, collection: str, filters: Iterable[Filter] = (), order_by: Optional[str] = None,
               descending: bool = False, limit: Optional[int] = None):
        query = self.client.collection(collection)
        for field, op, value in filters:
            query = query.where(filter=FieldFilter(field, op, value))
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        if limit:
            query = query.limit(limit)
        return query

    @_storage_errors
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self.client.collection(collection).document(doc_id).get()
        return doc.to_dict() if doc.exists else None

    @_storage_errors
    def set(self, collection: str, doc_id: str, fields: Dict[str, Any], merge: bool = False):
        self.client.collection(collection).document(doc_id).set(fields, merge=merge)

    @_storage_errors
    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]):
        self.client.collection(collection).document(doc_id).update(fields)

    @_storage_errors
    def add(self, collection: str, fields: Dict[str, Any]) -> str:
        _, ref = self.client.collection(collection).add(fields)
        return ref.id

    @_storage_errors
    def delete(self, collection: str, doc_id: str):
        self.client.collection(collection).document(doc_id).delete()

    @_storage_errors
    def query(self, collection: str, filters: Iterable[Filter] = (), order_by: Optional[str] = None,
              descending: bool = False, limit: Optional[int] = None) -> List[Document]:
        docs = self._query(collection, filters, order_by, descending, limit).stream()
        return [(doc.id, doc.to_dict()) for doc in docs]

    @_storage_errors
    def array_union(self, collection: str, doc_id: str, field: str, values: List[Any]):
        self.client.collection(collection).document(doc_id).update({field: firestore.ArrayUnion(values)})

    @_storage_errors
    def watch(self, collection: str, callback: Callable[[List[Document]], None],
              filters: Iterable[Filter] = (), order_by: Optional[str] = None,
              descending: bool = False, limit: Optional[int] = None) -> Callable[[], None]:
        """Live query. Returns the unsubscribe callable; callers must invoke it on teardown."""
        def on_snapshot(snapshots, changes, read_time):
            callback([(doc.id, doc.to_dict()) for doc in snapshots])

        watcher = self._query(collection, filters, order_by, descending, limit).on_snapshot(on_snapshot)
        return watcher.unsubscribe

    @_storage_errors
    def run_transaction(self, fn: Callable[[FirestoreTransaction], Any]) -> Any:
        """Runs fn atomically. Firestore retries fn on contention, so fn must only touch the store."""
        @firestore.transactional
        def _run(transaction):
            return fn(FirestoreTransaction(self.client, transaction))

        return _run(self.client.transaction())
