import pytest
from fastapi.testclient import TestClient
from reelfeed.main import app
from reelfeed.config import settings
from reelfeed.models import Video
from reelfeed.services.store import MemoryStore, StoreError, build_mock_store


class FakeMedia:
    """Stands in for the presentation layer's video element."""

    def __init__(self, video_id, duration=30.0):
        self.video_id = video_id
        self.current_time = 0.0
        self.duration = duration
        self.playback_rate = 1.0
        self.muted = False
        self.playing = False
        self.calls = []
        self._handlers = {}

    def play(self):
        self.playing = True
        self.calls.append(("play", self.current_time))

    def pause(self):
        self.playing = False
        self.calls.append(("pause", self.current_time))

    def on(self, event, callback):
        self._handlers.setdefault(event, []).append(callback)
        return lambda: self._handlers[event].remove(callback)

    def emit(self, event):
        for callback in list(self._handlers.get(event, [])):
            callback()

    @property
    def listener_count(self):
        return sum(len(h) for h in self._handlers.values())


class FakeHost:
    def __init__(self, duration=30.0):
        self.duration = duration
        self.mounted = {}
        self.history = []

    def mount(self, video):
        media = FakeMedia(video.id, self.duration)
        self.mounted[video.id] = media
        self.history.append(media)
        return media

    def unmount(self, video_id):
        self.mounted.pop(video_id, None)

    def playing(self):
        return [vid for vid, media in self.mounted.items() if media.playing]


class FailingStore(MemoryStore):
    """Memory store whose writes (or reads) can be switched off."""

    def __init__(self, fail_writes=True, fail_reads=False):
        super().__init__()
        self.fail_writes = fail_writes
        self.fail_reads = fail_reads
        self.write_attempts = 0
        # Method names whose next call fails even with fail_writes off
        self.fail_once = set()

    async def _guard_write(self, name=None):
        self.write_attempts += 1
        if name in self.fail_once:
            self.fail_once.discard(name)
            raise StoreError(f"{name} rejected")
        if self.fail_writes:
            raise StoreError("write rejected")

    async def toggle_set_membership(self, *args, **kwargs):
        await self._guard_write()
        await super().toggle_set_membership(*args, **kwargs)

    async def increment_counter(self, *args, **kwargs):
        await self._guard_write()
        await super().increment_counter(*args, **kwargs)

    async def update_counter_and_members(self, *args, **kwargs):
        await self._guard_write("update_counter_and_members")
        await super().update_counter_and_members(*args, **kwargs)

    async def add_document(self, *args, **kwargs):
        await self._guard_write("add_document")
        return await super().add_document(*args, **kwargs)

    async def set_document(self, *args, **kwargs):
        await self._guard_write()
        await super().set_document(*args, **kwargs)

    async def delete_document(self, *args, **kwargs):
        await self._guard_write()
        await super().delete_document(*args, **kwargs)

    async def query(self, *args, **kwargs):
        if self.fail_reads:
            raise StoreError("read rejected")
        return await super().query(*args, **kwargs)

    async def get_document(self, *args, **kwargs):
        if self.fail_reads:
            raise StoreError("read rejected")
        return await super().get_document(*args, **kwargs)


@pytest.fixture
def client():
    # Force mock mode for tests
    settings.MOCK_MODE = True
    app.state.mock_store = build_mock_store()
    with TestClient(app) as c:
        yield c

@pytest.fixture
def logged_in_client(client):
    client.get("/auth/callback?mock=true")
    return client

@pytest.fixture
def broken_store(logged_in_client):
    """Swaps the app's mock store for one that rejects every write."""
    store = FailingStore()
    app.state.mock_store = store
    return store

@pytest.fixture
def store():
    return MemoryStore()

@pytest.fixture
def host():
    return FakeHost()

@pytest.fixture
def failing_store():
    return FailingStore()

@pytest.fixture
def make_video():
    def factory(video_id="v1", **fields):
        data = {"id": video_id, "userId": fields.pop("userId", "author"), "videoUrl": f"https://cdn.test/{video_id}.mp4"}
        data.update(fields)
        return Video.from_document(data)
    return factory

@pytest.fixture
def seed_reels():
    async def seed(store, *reels):
        for reel in reels:
            data = dict(reel)
            doc_id = data.pop("id")
            data.setdefault("videoUrl", f"https://cdn.test/{doc_id}.mp4")
            data.setdefault("userId", "author")
            await store.set_document(f"reels/{doc_id}", data)
    return seed
