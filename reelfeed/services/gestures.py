"""Touch gesture classification for feed cards.

A tap is held back for ``double_tap_window`` seconds; a second tap inside the
window and within ``TAP_SLOP`` of the first cancels it and fires a double tap
instead. A horizontal drag longer than ``swipe_distance`` that dominates the
vertical movement is a swipe and never counts as a tap.
"""
import asyncio
from enum import Enum
from typing import Callable, Optional

from .playback import OVERLAY_REGIONS, Region


DOUBLE_TAP_WINDOW = 0.3  # seconds
SWIPE_DISTANCE = 50  # px
TAP_SLOP = 10  # px a finger may drift and still tap


class SwipeDirection(str, Enum):
    LEFT = "left"
    RIGHT = "right"


class GestureRecognizer:
    def __init__(
        self,
        on_tap: Optional[Callable[[], None]] = None,
        on_double_tap: Optional[Callable[[], None]] = None,
        on_swipe: Optional[Callable[[SwipeDirection], None]] = None,
        double_tap_window: float = DOUBLE_TAP_WINDOW,
        swipe_distance: float = SWIPE_DISTANCE,
    ):
        self.on_tap = on_tap
        self.on_double_tap = on_double_tap
        self.on_swipe = on_swipe
        self.double_tap_window = double_tap_window
        self.swipe_distance = swipe_distance
        self._start = None
        self._last = None
        self._region = Region.MEDIA
        self._last_tap_at = None
        self._last_tap_pos = None
        self._pending: Optional[asyncio.TimerHandle] = None

    @property
    def tap_pending(self) -> bool:
        return self._pending is not None

    def touch_start(self, x: float, y: float, region: Region = Region.MEDIA):
        self._start = (x, y)
        self._last = (x, y)
        self._region = region

    def touch_move(self, x: float, y: float):
        if self._start is not None:
            self._last = (x, y)

    def touch_end(self, x: Optional[float] = None, y: Optional[float] = None) -> Optional[str]:
        """Classifies the finished touch. Returns "swipe", "tap", "double_tap" or None."""
        if self._start is None:
            return None
        if x is not None and y is not None:
            self._last = (x, y)
        dx = self._last[0] - self._start[0]
        dy = self._last[1] - self._start[1]
        region = self._region
        end = self._last
        self._start = self._last = None

        if abs(dx) > self.swipe_distance and abs(dx) > abs(dy):
            direction = SwipeDirection.LEFT if dx < 0 else SwipeDirection.RIGHT
            if self.on_swipe:
                self.on_swipe(direction)
            return "swipe"

        # Scrolls and overlay controls are not taps
        if abs(dx) > TAP_SLOP or abs(dy) > TAP_SLOP or region in OVERLAY_REGIONS:
            return None

        loop = asyncio.get_running_loop()
        now = loop.time()
        if self._pending is not None:
            px, py = self._last_tap_pos
            near = abs(end[0] - px) <= TAP_SLOP and abs(end[1] - py) <= TAP_SLOP
            if near and now - self._last_tap_at <= self.double_tap_window:
                self._pending.cancel()
                self._pending = None
                self._last_tap_at = self._last_tap_pos = None
                if self.on_double_tap:
                    self.on_double_tap()
                return "double_tap"
            # The first tap stands on its own
            self._pending.cancel()
            self._fire_tap()

        self._last_tap_at = now
        self._last_tap_pos = end
        self._pending = loop.call_later(self.double_tap_window, self._fire_tap)
        return "tap"

    def _fire_tap(self):
        self._pending = None
        self._last_tap_at = self._last_tap_pos = None
        if self.on_tap:
            self.on_tap()

    def cancel(self):
        """Drops any deferred tap; called on teardown."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self._last_tap_at = self._last_tap_pos = None
        self._start = self._last = None
