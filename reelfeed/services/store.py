"""Document store contract used by the feed engine, plus an in-memory backend.

The hosted database is reached through :class:`DocumentStore`. Paths follow the
``collection/docId/subcollection/docId`` convention; query results are plain
dicts carrying the document id under ``"id"``.
"""
import copy
import itertools
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]
Where = Tuple[str, str, object]


class StoreError(Exception):
    """Raised when a remote store operation fails."""


def split_path(path: str) -> Tuple[str, str]:
    """Splits ``reels/abc`` into (``reels``, ``abc``)."""
    parts = path.strip("/").split("/")
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"Not a document path: {path}")
    return "/".join(parts[:-1]), parts[-1]


class DocumentStore(ABC):
    """Operations the app needs from the hosted document database."""

    @abstractmethod
    async def get_document(self, path: str) -> Optional[dict]:
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        where: Sequence[Where] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[dict]:
        ...

    @abstractmethod
    async def add_document(self, collection: str, data: dict) -> str:
        ...

    @abstractmethod
    async def set_document(self, path: str, data: dict, merge: bool = False) -> None:
        ...

    @abstractmethod
    async def delete_document(self, path: str) -> None:
        ...

    @abstractmethod
    async def toggle_set_membership(self, collection: str, doc_id: str, field: str, user_id: str, add: bool) -> None:
        """Adds or removes ``user_id`` in an array field with set semantics."""

    @abstractmethod
    async def increment_counter(self, collection: str, doc_id: str, field: str, delta: float) -> None:
        ...

    @abstractmethod
    async def update_counter_and_members(self, collection: str, doc_id: str, counter: str, delta: float,
                                         field: str, user_id: str, add: bool) -> None:
        """Moves a counter and the matching user-set together in one write."""

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        callback: Callable[[List[dict]], None],
        where: Sequence[Where] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Unsubscribe:
        """Calls ``callback`` with the full result set whenever it changes."""

    async def fetch_candidates(self, window: int, order_key: str = "createdAt",
                               collection: str = "reels", where: Sequence[Where] = ()) -> List[dict]:
        """Newest-first candidate window for ranking."""
        return await self.query(collection, where=where, order_by=order_key, descending=True, limit=window)

    async def fetch_followed_author_ids(self, viewer_id: str) -> List[str]:
        docs = await self.query(f"followers/{viewer_id}/userFollowing")
        return [d["id"] for d in docs]


def _sort_key(field):
    # Missing values sort before everything else
    def key(doc):
        value = doc.get(field)
        return (value is not None, value)
    return key


def _matches(doc: dict, where: Iterable[Where]) -> bool:
    for field, op, value in where:
        current = doc.get(field)
        if op == "==":
            ok = current == value
        elif op == "!=":
            ok = current is not None and current != value
        elif op == "in":
            ok = current in value
        elif op == "array-contains":
            ok = isinstance(current, list) and value in current
        elif op == "<":
            ok = current is not None and current < value
        elif op == ">":
            ok = current is not None and current > value
        else:
            raise ValueError(f"Unsupported operator: {op}")
        if not ok:
            return False
    return True


class MemoryStore(DocumentStore):
    """Keeps every collection in process. Used in mock mode and in tests."""

    def __init__(self):
        self._collections = {}
        self._listeners = {}
        self._ids = itertools.count(1)

    def _collection(self, name: str) -> dict:
        return self._collections.setdefault(name.strip("/"), {})

    def _run_query(self, collection, where=(), order_by=None, descending=False, limit=None):
        docs = [
            {"id": doc_id, **copy.deepcopy(data)}
            for doc_id, data in self._collection(collection).items()
            if _matches(data, where)
        ]
        if order_by:
            docs.sort(key=_sort_key(order_by), reverse=descending)
        if limit is not None:
            docs = docs[:limit]
        return docs

    def _notify(self, collection: str):
        for listener in list(self._listeners.get(collection.strip("/"), [])):
            callback, where, order_by, descending = listener
            callback(self._run_query(collection, where, order_by, descending))

    async def get_document(self, path):
        collection, doc_id = split_path(path)
        data = self._collection(collection).get(doc_id)
        if data is None:
            return None
        return {"id": doc_id, **copy.deepcopy(data)}

    async def query(self, collection, where=(), order_by=None, descending=False, limit=None):
        return self._run_query(collection, where, order_by, descending, limit)

    async def add_document(self, collection, data):
        doc_id = f"doc{next(self._ids)}"
        self._collection(collection)[doc_id] = copy.deepcopy(data)
        self._notify(collection)
        return doc_id

    async def set_document(self, path, data, merge=False):
        collection, doc_id = split_path(path)
        docs = self._collection(collection)
        if merge and doc_id in docs:
            docs[doc_id].update(copy.deepcopy(data))
        else:
            docs[doc_id] = copy.deepcopy(data)
        self._notify(collection)

    async def delete_document(self, path):
        collection, doc_id = split_path(path)
        self._collection(collection).pop(doc_id, None)
        self._notify(collection)

    async def toggle_set_membership(self, collection, doc_id, field, user_id, add):
        doc = self._collection(collection).setdefault(doc_id, {})
        self._apply_membership(doc, field, user_id, add)
        self._notify(collection)

    @staticmethod
    def _apply_membership(doc, field, user_id, add):
        members = list(doc.get(field) or [])
        if add and user_id not in members:
            members.append(user_id)
        elif not add:
            members = [m for m in members if m != user_id]
        doc[field] = members

    async def increment_counter(self, collection, doc_id, field, delta):
        doc = self._collection(collection).setdefault(doc_id, {})
        doc[field] = (doc.get(field) or 0) + delta
        self._notify(collection)

    async def update_counter_and_members(self, collection, doc_id, counter, delta, field, user_id, add):
        doc = self._collection(collection).setdefault(doc_id, {})
        doc[counter] = (doc.get(counter) or 0) + delta
        self._apply_membership(doc, field, user_id, add)
        self._notify(collection)

    def subscribe(self, collection, callback, where=(), order_by=None, descending=False):
        key = collection.strip("/")
        listener = (callback, tuple(where), order_by, descending)
        self._listeners.setdefault(key, []).append(listener)
        # Deliver the current snapshot right away, like a live listener does
        callback(self._run_query(collection, where, order_by, descending))

        def unsubscribe():
            listeners = self._listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe


def get_mock_reels() -> List[dict]:
    """Returns fake reel documents for running without a backend."""
    now = datetime.now(timezone.utc)
    return [
        {
            "id": "reel_sunset",
            "userId": "user_ana",
            "username": "ana",
            "avatar": "https://i.pravatar.cc/150?u=ana",
            "videoUrl": "https://samplelib.com/lib/preview/mp4/sample-5s.mp4",
            "thumbnailUrl": "https://picsum.photos/seed/sunset/540/960",
            "desc": "Sunset over the bay",
            "hashtags": ["sunset", "travel"],
            "createdAt": now - timedelta(hours=2),
            "likesUsers": ["user_bruno", "user_caio", "user_dani"],
            "favoritesUsers": ["user_bruno"],
            "comments": 4,
            "views": 120,
            "shares": 2,
            "repostsCount": 1,
        },
        {
            "id": "reel_skate",
            "userId": "user_bruno",
            "username": "bruno",
            "avatar": "https://i.pravatar.cc/150?u=bruno",
            "videoUrl": "https://samplelib.com/lib/preview/mp4/sample-10s.mp4",
            "thumbnailUrl": "https://picsum.photos/seed/skate/540/960",
            "desc": "First kickflip on camera",
            "hashtags": ["skate"],
            "createdAt": now - timedelta(hours=5),
            "likesUsers": ["user_ana"],
            "favoritesUsers": [],
            "comments": 1,
            "views": 900,
            "shares": 0,
            "repostsCount": 0,
        },
        {
            "id": "reel_recipe",
            "userId": "user_caio",
            "username": "caio",
            "avatar": "https://i.pravatar.cc/150?u=caio",
            "videoUrl": "https://samplelib.com/lib/preview/mp4/sample-15s.mp4",
            "slides": [
                "https://picsum.photos/seed/recipe1/540/960",
                "https://picsum.photos/seed/recipe2/540/960",
                "https://picsum.photos/seed/recipe3/540/960",
            ],
            "desc": "Three-step pasta",
            "hashtags": ["food", "travel"],
            "createdAt": now - timedelta(days=1),
            "likesUsers": [],
            "favoritesUsers": ["user_ana", "user_dani"],
            "comments": 0,
            "views": 15,
            "shares": 1,
            "repostsCount": 0,
        },
    ]


def build_mock_store() -> MemoryStore:
    """A store seeded with the mock reels and a mock viewer who follows ana."""
    store = MemoryStore()
    docs = store._collection("reels")
    for reel in get_mock_reels():
        data = dict(reel)
        docs[data.pop("id")] = data
    store._collection("followers/mock_user/userFollowing")["user_ana"] = {"followedUserId": "user_ana"}
    store._collection("followers/user_ana/userFollowers")["mock_user"] = {"followerId": "mock_user"}
    return store
