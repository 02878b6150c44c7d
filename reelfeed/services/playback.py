"""Per-slot playback lifecycle for feed videos.

Each slot owns a :class:`PlaybackController`. Only an active slot holds a
mounted media element; deactivating a slot saves its position and unmounts it,
so at most one video decodes at a time across the whole feed.
"""
import logging
from enum import Enum
from typing import Callable, List, Optional, Protocol

from ..models import Video

logger = logging.getLogger(__name__)

PLAYBACK_RATES = (1.0, 1.5, 2.0, 0.5)


class PlaybackState(str, Enum):
    UNMOUNTED = "unmounted"
    PAUSED = "paused"
    PLAYING = "playing"
    BUFFERING = "buffering"


class MediaEvent(str, Enum):
    LOADED_METADATA = "loadedmetadata"
    TIME_UPDATE = "timeupdate"
    WAITING = "waiting"
    CAN_PLAY = "canplay"
    ENDED = "ended"


class Region(str, Enum):
    """Where on the card a touch landed."""
    MEDIA = "media"
    ACTIONS = "actions"
    SEEK_BAR = "seek_bar"
    CAPTION = "caption"


# Touches on these regions belong to their own controls
OVERLAY_REGIONS = frozenset({Region.ACTIONS, Region.SEEK_BAR, Region.CAPTION})


class MediaElement(Protocol):
    current_time: float
    duration: float
    playback_rate: float
    muted: bool

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def on(self, event: str, callback: Callable[[], None]) -> Callable[[], None]: ...


class MediaHost(Protocol):
    """Presentation layer that creates and destroys media elements."""

    def mount(self, video: Video) -> MediaElement: ...

    def unmount(self, video_id: str) -> None: ...


class PlaybackController:
    def __init__(self, video: Video, host: MediaHost):
        self.video = video
        self.host = host
        self.state = PlaybackState.UNMOUNTED
        self.saved_position = 0.0
        self.is_playing = False
        self.muted = True
        self.rate_index = 0
        self.progress = 0.0
        self.media: Optional[MediaElement] = None
        self._pending_seek: Optional[float] = None
        self._unsubscribers: List[Callable[[], None]] = []

    @property
    def mounted(self) -> bool:
        return self.media is not None

    @property
    def playback_rate(self) -> float:
        return PLAYBACK_RATES[self.rate_index]

    @property
    def position(self) -> float:
        return self.media.current_time if self.media is not None else self.saved_position

    @property
    def buffering(self) -> bool:
        return self.state == PlaybackState.BUFFERING

    def activate(self, muted: bool = False):
        """Mounts the media, restores the saved position and starts playing."""
        if self.media is not None:
            return
        media = self.host.mount(self.video)
        self.media = media
        self._unsubscribers = [
            media.on(MediaEvent.LOADED_METADATA.value, self._on_loaded_metadata),
            media.on(MediaEvent.TIME_UPDATE.value, self._on_time_update),
            media.on(MediaEvent.WAITING.value, self._on_waiting),
            media.on(MediaEvent.CAN_PLAY.value, self._on_can_play),
            media.on(MediaEvent.ENDED.value, self._on_ended),
        ]
        self.muted = muted
        media.muted = muted
        media.playback_rate = self.playback_rate
        self.state = PlaybackState.PAUSED

        if self.saved_position:
            if media.duration:
                media.current_time = self.saved_position
            else:
                # Seeking before metadata is ignored by most pipelines
                self._pending_seek = self.saved_position
        self.play()

    def deactivate(self):
        """Saves the position, stops decoding and unmounts."""
        media = self.media
        if media is None:
            return
        self.saved_position = self._pending_seek if self._pending_seek is not None else media.current_time
        self._pending_seek = None
        media.pause()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.media = None
        self.host.unmount(self.video.id)
        self.is_playing = False
        self.state = PlaybackState.UNMOUNTED
        logger.debug(f"Unmounted {self.video.id} at {self.saved_position:.2f}s")

    def play(self):
        if self.media is None:
            return
        self.is_playing = True
        self.media.play()
        if self.state != PlaybackState.BUFFERING:
            self.state = PlaybackState.PLAYING

    def pause(self):
        if self.media is None:
            return
        self.is_playing = False
        self.media.pause()
        self.state = PlaybackState.PAUSED

    def toggle_play(self):
        if self.is_playing:
            self.pause()
        else:
            self.play()

    def tap(self, region: Region = Region.MEDIA) -> bool:
        """Toggles play/pause. Returns False when the tap hit an overlay control."""
        if region in OVERLAY_REGIONS:
            return False
        self.toggle_play()
        return True

    def seek(self, position: float):
        """Jumps to an absolute position, clamped to the media length."""
        position = max(0.0, position)
        if self.media is None:
            self.saved_position = position
            return
        if not self.media.duration:
            # Applied on loadedmetadata, replacing any restore still queued
            self._pending_seek = position
            return
        self._pending_seek = None
        self.media.current_time = min(position, self.media.duration)
        self._on_time_update()

    def cycle_rate(self) -> float:
        self.rate_index = (self.rate_index + 1) % len(PLAYBACK_RATES)
        if self.media is not None:
            self.media.playback_rate = self.playback_rate
        return self.playback_rate

    def toggle_mute(self) -> bool:
        self.muted = not self.muted
        if self.media is not None:
            self.media.muted = self.muted
        return self.muted

    # Media element events

    def _on_loaded_metadata(self):
        if self._pending_seek is not None and self.media is not None:
            position = self._pending_seek
            if self.media.duration:
                position = min(position, self.media.duration)
            self.media.current_time = position
            self._pending_seek = None

    def _on_time_update(self):
        media = self.media
        if media is not None and media.duration:
            self.progress = media.current_time / media.duration

    def _on_waiting(self):
        if self.state == PlaybackState.PLAYING:
            self.state = PlaybackState.BUFFERING

    def _on_can_play(self):
        if self.state == PlaybackState.BUFFERING:
            self.state = PlaybackState.PLAYING if self.is_playing else PlaybackState.PAUSED

    def _on_ended(self):
        # Reels loop instead of advancing
        if self.media is None:
            return
        self.media.current_time = 0
        self.progress = 0.0
        self.play()


class SlideCursor:
    """Visible slide of a multi-image post."""

    def __init__(self, slides):
        self.slides = list(slides or [])
        self.index = 0

    @property
    def current(self) -> Optional[str]:
        return self.slides[self.index] if self.slides else None

    def advance(self) -> bool:
        if self.index + 1 >= len(self.slides):
            return False
        self.index += 1
        return True

    def retreat(self) -> bool:
        if self.index == 0:
            return False
        self.index -= 1
        return True
