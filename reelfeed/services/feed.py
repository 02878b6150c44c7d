"""Feed session: the ordered reels a viewer scrolls through and the single
active (playing) one.

The presentation layer reports how much of each card is on screen through a
visibility signal. Crossing the activation threshold upward makes a card the
active one; switching happens in one synchronous step, deactivating the old
slot before the new one mounts.
"""
import asyncio
import logging
import random
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol

from ..config import settings
from ..models import Video
from .engagement import ActionResult, EngagementController, Viewer, load_blocked_ids
from .gestures import GestureRecognizer, SwipeDirection
from .playback import MediaHost, PlaybackController, SlideCursor
from .ranking import fetch_following, fetch_ranked, fetch_recommended
from .store import DocumentStore, Unsubscribe
from .utils import check_media_reachable_parallel

logger = logging.getLogger(__name__)

VisibilityCallback = Callable[[str, float], None]


class FeedMode(str, Enum):
    DISCOVERY = "discovery"
    FOLLOWING = "following"
    RECOMMENDED = "recommended"


class VisibilitySignal(Protocol):
    def subscribe(self, callback: VisibilityCallback) -> Unsubscribe: ...


class VisibilityHub:
    """In-process visibility signal; the view pushes (video_id, ratio) pairs."""

    def __init__(self):
        self._callbacks: List[VisibilityCallback] = []

    def subscribe(self, callback: VisibilityCallback) -> Unsubscribe:
        self._callbacks.append(callback)

        def unsubscribe():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def report(self, video_id: str, ratio: float):
        for callback in list(self._callbacks):
            callback(video_id, ratio)

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)


async def load_videos(store: DocumentStore, mode: FeedMode, viewer_id: Optional[str] = None,
                      rng: Optional[random.Random] = None) -> List[Video]:
    """Fetches, ranks and filters the reels for one feed tab. Raises on fetch errors."""
    mode = FeedMode(mode)
    if mode == FeedMode.FOLLOWING:
        if not viewer_id:
            return []
        videos = await fetch_following(store, viewer_id)
    elif mode == FeedMode.RECOMMENDED:
        videos = await fetch_recommended(store)
    else:
        videos = await fetch_ranked(store)

    blocked = await load_blocked_ids(store, viewer_id)
    if blocked:
        videos = [v for v in videos if v.user_id not in blocked]

    if settings.VERIFY_MEDIA and videos:
        reachable = await check_media_reachable_parallel([v.video_url for v in videos])
        videos = [v for v in videos if v.video_url in reachable]

    # Discovery gets a fresh plain shuffle on every load
    if mode == FeedMode.DISCOVERY:
        (rng or random).shuffle(videos)
    return videos


class ReelCard:
    """One feed slot: playback, gestures, slides and engagement for a video."""

    def __init__(self, video: Video, host: MediaHost, engagement: EngagementController,
                 on_result: Optional[Callable[[str, ActionResult], None]] = None):
        self.video = video
        self.engagement = engagement
        self.playback = PlaybackController(video, host)
        self.slides = SlideCursor(video.slides) if video.is_slideshow else None
        self.on_result = on_result
        self.gestures = GestureRecognizer(
            on_tap=self.playback.toggle_play,
            on_double_tap=self._double_tap_like,
            on_swipe=self._swipe,
        )
        self._tasks = set()

    def _double_tap_like(self):
        task = asyncio.get_running_loop().create_task(self.like())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _swipe(self, direction: SwipeDirection):
        # Swipes only page through slideshow posts
        if self.slides is None:
            return
        if direction == SwipeDirection.LEFT:
            self.slides.advance()
        else:
            self.slides.retreat()

    def _report(self, action: str, result: ActionResult) -> ActionResult:
        if self.on_result:
            self.on_result(action, result)
        return result

    async def like(self) -> ActionResult:
        return self._report("like", await self.engagement.like(self.video))

    async def toggle_like(self) -> ActionResult:
        return self._report("like", await self.engagement.toggle_like(self.video))

    async def toggle_favorite(self) -> ActionResult:
        return self._report("favorite", await self.engagement.toggle_favorite(self.video))

    async def toggle_follow(self) -> ActionResult:
        return self._report("follow", await self.engagement.toggle_follow(self.video.user_id))

    async def share(self) -> ActionResult:
        return self._report("share", await self.engagement.share(self.video))

    async def wait_idle(self):
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    def release(self):
        self.gestures.cancel()
        self.playback.deactivate()


class FeedSession:
    def __init__(self, store: DocumentStore, host: MediaHost, viewer: Optional[Viewer] = None,
                 threshold: float = None, rng: Optional[random.Random] = None,
                 on_result: Optional[Callable[[str, ActionResult], None]] = None):
        self.store = store
        self.host = host
        self.viewer = viewer
        self.threshold = threshold if threshold is not None else settings.ACTIVATION_THRESHOLD
        self.rng = rng
        self.engagement = EngagementController(store, viewer)
        self.on_result = on_result
        self.mode: Optional[FeedMode] = None
        self.videos: List[Video] = []
        self.active_id: Optional[str] = None
        self.loading = False
        self.closed = False
        self._cards: Dict[str, ReelCard] = {}
        self._ratios: Dict[str, float] = {}
        self._subscriptions: List[Unsubscribe] = []
        self._view_tasks = set()
        self._activations = 0

    @property
    def active_card(self) -> Optional[ReelCard]:
        return self._cards.get(self.active_id) if self.active_id else None

    async def load(self, mode: FeedMode, viewer_id: Optional[str] = None) -> List[Video]:
        """Replaces the session's list. Fetch failures leave it empty."""
        viewer_id = viewer_id or (self.viewer.user_id if self.viewer else None)
        self.loading = True
        try:
            videos = await load_videos(self.store, mode, viewer_id, self.rng)
        except Exception as e:
            logger.error(f"Error loading {mode} feed: {e}")
            videos = []
        finally:
            self.loading = False
        await self.engagement.load_following()

        self._reset()
        self.mode = FeedMode(mode)
        self.videos = videos
        self._cards = {
            v.id: ReelCard(v, self.host, self.engagement, self.on_result) for v in videos
        }
        logger.info(f"Loaded {len(videos)} reels for {self.mode.value} feed")
        return videos

    def card(self, video_id: str) -> ReelCard:
        return self._cards[video_id]

    def set_active(self, video_id: str):
        """Makes ``video_id`` the only playing video and records one view."""
        if self.closed or video_id == self.active_id:
            return
        card = self._cards.get(video_id)
        if card is None:
            logger.warning(f"Ignoring activation of unknown reel {video_id}")
            return

        previous = self.active_card
        if previous is not None:
            previous.playback.deactivate()
        self.active_id = video_id
        # The first video of a session starts muted so autoplay is allowed
        card.playback.activate(muted=self._activations == 0)
        self._activations += 1
        self._record_view(card.video)

    def clear_active(self):
        previous = self.active_card
        if previous is not None:
            previous.playback.deactivate()
        self.active_id = None

    def observe(self, video_id: str, ratio: float):
        """Visibility callback: activation on upward threshold crossings."""
        if self.closed:
            return
        before = self._ratios.get(video_id, 0.0)
        self._ratios[video_id] = ratio
        if before < self.threshold <= ratio:
            self.set_active(video_id)
        elif video_id == self.active_id and ratio < self.threshold <= before:
            self.clear_active()

    def attach(self, signal: VisibilitySignal):
        self.add_subscription(signal.subscribe(self.observe))

    def add_subscription(self, unsubscribe: Unsubscribe):
        """Registers a handle to release on close (visibility, live listeners)."""
        self._subscriptions.append(unsubscribe)

    def _record_view(self, video: Video):
        task = asyncio.get_running_loop().create_task(self._increment_views(video))
        self._view_tasks.add(task)
        task.add_done_callback(self._view_tasks.discard)

    async def _increment_views(self, video: Video):
        try:
            await self.store.increment_counter("reels", video.id, "views", 1)
        except Exception as e:
            logger.error(f"Error incrementing views for {video.id}: {e}")
            return
        video.views += 1

    async def flush(self):
        """Waits for outstanding view writes and gesture-triggered actions."""
        pending = list(self._view_tasks)
        if pending:
            await asyncio.gather(*pending)
        for card in self._cards.values():
            await card.wait_idle()

    def _reset(self):
        self.clear_active()
        for card in self._cards.values():
            card.release()
        self._cards = {}
        self._ratios = {}
        self._activations = 0

    def close(self):
        """Releases subscriptions and stops playback. The session is unusable afterwards."""
        if self.closed:
            return
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []
        self._reset()
        self.closed = True
