"""Firestore implementation of :class:`DocumentStore` on google-cloud-firestore.

Reads and writes go through the async client. Set-membership and counter
writes use ``ArrayUnion``/``ArrayRemove`` and ``Increment`` transforms so they
stay commutative on the server. Live subscriptions are ``on_snapshot``
listeners, which only the synchronous client offers.
"""
import asyncio
import logging
from contextlib import contextmanager
from typing import Optional

from google.api_core.exceptions import GoogleAPIError
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2.credentials import Credentials

from ..config import settings
from .store import DocumentStore, StoreError

logger = logging.getLogger(__name__)

OPERATORS = frozenset({"==", "!=", "<", ">", "in", "array-contains"})


@contextmanager
def store_errors(action: str):
    """Re-raises client failures as :class:`StoreError`."""
    try:
        yield
    except GoogleAPIError as e:
        raise StoreError(f"{action} failed: {e}") from e


def snapshot_to_dict(snapshot) -> dict:
    return {"id": snapshot.id, **(snapshot.to_dict() or {})}


def build_query(ref, where=(), order_by=None, descending=False, limit=None):
    query = ref
    for field, op, value in where:
        if op not in OPERATORS:
            raise ValueError(f"Unsupported operator: {op}")
        query = query.where(filter=FieldFilter(field, op, list(value) if op == "in" else value))
    if order_by:
        direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
        query = query.order_by(order_by, direction=direction)
    if limit is not None:
        query = query.limit(limit)
    return query


class FirestoreStore(DocumentStore):
    def __init__(self, project_id: Optional[str] = None, credentials=None, database: Optional[str] = None,
                 client=None, listen_client=None):
        self.project_id = project_id
        self.credentials = credentials
        self.database = database or settings.FIRESTORE_DATABASE
        self.client = client or firestore.AsyncClient(
            project=project_id, credentials=credentials, database=self.database
        )
        self._listen_client = listen_client

    @property
    def listen_client(self):
        if self._listen_client is None:
            self._listen_client = firestore.Client(
                project=self.project_id, credentials=self.credentials, database=self.database
            )
        return self._listen_client

    def _document(self, path: str):
        return self.client.document(path.strip("/"))

    async def get_document(self, path):
        with store_errors(f"get {path}"):
            snapshot = await self._document(path).get()
        if not snapshot.exists:
            return None
        return snapshot_to_dict(snapshot)

    async def query(self, collection, where=(), order_by=None, descending=False, limit=None):
        query = build_query(self.client.collection(collection.strip("/")), where, order_by, descending, limit)
        with store_errors(f"query {collection}"):
            return [snapshot_to_dict(snapshot) async for snapshot in query.stream()]

    async def add_document(self, collection, data):
        with store_errors(f"add to {collection}"):
            _, ref = await self.client.collection(collection.strip("/")).add(data)
        return ref.id

    async def set_document(self, path, data, merge=False):
        with store_errors(f"set {path}"):
            await self._document(path).set(data, merge=merge)

    async def delete_document(self, path):
        with store_errors(f"delete {path}"):
            await self._document(path).delete()

    async def toggle_set_membership(self, collection, doc_id, field, user_id, add):
        transform = firestore.ArrayUnion([user_id]) if add else firestore.ArrayRemove([user_id])
        with store_errors(f"update {collection}/{doc_id}.{field}"):
            await self._document(f"{collection}/{doc_id}").set({field: transform}, merge=True)

    async def increment_counter(self, collection, doc_id, field, delta):
        with store_errors(f"increment {collection}/{doc_id}.{field}"):
            await self._document(f"{collection}/{doc_id}").set({field: firestore.Increment(delta)}, merge=True)

    async def update_counter_and_members(self, collection, doc_id, counter, delta, field, user_id, add):
        transform = firestore.ArrayUnion([user_id]) if add else firestore.ArrayRemove([user_id])
        with store_errors(f"update {collection}/{doc_id}.{counter}"):
            await self._document(f"{collection}/{doc_id}").set(
                {counter: firestore.Increment(delta), field: transform}, merge=True
            )

    def subscribe(self, collection, callback, where=(), order_by=None, descending=False):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        query = build_query(self.listen_client.collection(collection.strip("/")), where, order_by, descending)

        def on_snapshot(snapshots, changes, read_time):
            docs = [snapshot_to_dict(snapshot) for snapshot in snapshots]
            # Listener callbacks run on the client's background thread
            if loop is not None and not loop.is_closed():
                loop.call_soon_threadsafe(callback, docs)
            else:
                callback(docs)

        with store_errors(f"listen {collection}"):
            watch = query.on_snapshot(on_snapshot)

        def unsubscribe():
            watch.unsubscribe()

        return unsubscribe


def get_store_client(token_info: dict):
    """Builds the store for a signed-in session (None in mock mode)."""
    if token_info.get("mock"):
        return None
    return FirestoreStore(settings.FIRESTORE_PROJECT_ID, credentials=Credentials(token_info.get("access_token")))
