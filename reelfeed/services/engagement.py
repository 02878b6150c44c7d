"""Likes, favorites, follows, shares, reposts, blocks and reports.

Every toggle is optimistic: the local value flips at once, a single remote
write follows, and the previous value comes back if that write fails.
Anonymous viewers are turned away before anything is written.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

from ..models import Video
from .store import DocumentStore
from .utils import utcnow

logger = logging.getLogger(__name__)

REELS = "reels"


class ActionResult(str, Enum):
    APPLIED = "applied"
    REVERTED = "reverted"
    UNCHANGED = "unchanged"
    LOGIN_REQUIRED = "login_required"


class LoginRequired(Exception):
    """The action needs a signed-in viewer."""


@dataclass
class Viewer:
    user_id: str
    username: str = "Anonymous"
    avatar: Optional[str] = None

    @classmethod
    def from_session(cls, data: Optional[dict]) -> Optional["Viewer"]:
        if not data or not data.get("user_id"):
            return None
        return cls(user_id=data["user_id"], username=data.get("username") or "Anonymous",
                   avatar=data.get("avatar"))


async def optimistic_update(get: Callable[[], object], set_: Callable[[object], None], new_value,
                            write: Callable[[], Awaitable[None]], label: str = "update") -> ActionResult:
    """Applies ``new_value`` locally, writes once, restores the old value on failure."""
    previous = get()
    set_(new_value)
    try:
        await write()
    except Exception as e:
        logger.error(f"{label} failed, reverting: {e}")
        set_(previous)
        return ActionResult.REVERTED
    return ActionResult.APPLIED


class EngagementController:
    """Engagement actions of one viewer against reels in the current session."""

    def __init__(self, store: DocumentStore, viewer: Optional[Viewer]):
        self.store = store
        self.viewer = viewer
        self.following: Set[str] = set()

    @property
    def viewer_id(self) -> Optional[str]:
        return self.viewer.user_id if self.viewer else None

    async def _toggle_user_set(self, video: Video, attr: str, field: str, add: bool, label: str) -> ActionResult:
        if self.viewer is None:
            return ActionResult.LOGIN_REQUIRED
        uid = self.viewer.user_id
        members = getattr(video, attr)
        if (uid in members) == add:
            return ActionResult.UNCHANGED
        updated = [*members, uid] if add else [m for m in members if m != uid]
        return await optimistic_update(
            lambda: list(getattr(video, attr)),
            lambda value: setattr(video, attr, value),
            updated,
            lambda: self.store.toggle_set_membership(REELS, video.id, field, uid, add),
            label=f"{label} {video.id}",
        )

    def is_liked(self, video: Video) -> bool:
        return self.viewer_id in video.likes_users

    def is_favorited(self, video: Video) -> bool:
        return self.viewer_id in video.favorites_users

    async def like(self, video: Video) -> ActionResult:
        return await self._toggle_user_set(video, "likes_users", "likesUsers", True, "like")

    async def unlike(self, video: Video) -> ActionResult:
        return await self._toggle_user_set(video, "likes_users", "likesUsers", False, "unlike")

    async def toggle_like(self, video: Video) -> ActionResult:
        return await (self.unlike(video) if self.is_liked(video) else self.like(video))

    async def favorite(self, video: Video) -> ActionResult:
        return await self._toggle_user_set(video, "favorites_users", "favoritesUsers", True, "favorite")

    async def unfavorite(self, video: Video) -> ActionResult:
        return await self._toggle_user_set(video, "favorites_users", "favoritesUsers", False, "unfavorite")

    async def toggle_favorite(self, video: Video) -> ActionResult:
        return await (self.unfavorite(video) if self.is_favorited(video) else self.favorite(video))

    async def share(self, video: Video) -> ActionResult:
        if self.viewer is None:
            return ActionResult.LOGIN_REQUIRED
        uid = self.viewer.user_id
        return await optimistic_update(
            lambda: video.shares,
            lambda value: setattr(video, "shares", value),
            video.shares + 1,
            lambda: self.store.update_counter_and_members(REELS, video.id, "shares", 1, "sharesUsers", uid, True),
            label=f"share {video.id}",
        )

    async def repost(self, video: Video) -> ActionResult:
        """Marks the reel as reposted by the viewer (no new reel is created)."""
        return await self._set_repost(video, True)

    async def unrepost(self, video: Video) -> ActionResult:
        return await self._set_repost(video, False)

    async def _set_repost(self, video: Video, add: bool) -> ActionResult:
        if self.viewer is None:
            return ActionResult.LOGIN_REQUIRED
        viewer = self.viewer
        if (viewer.user_id in video.reposts_users) == add:
            return ActionResult.UNCHANGED
        marker = f"{REELS}/{video.id}/reposts/{viewer.user_id}"

        async def write():
            if add:
                await self.store.set_document(marker, {
                    "userId": viewer.user_id,
                    "username": viewer.username,
                    "avatar": viewer.avatar,
                    "reelId": video.id,
                    "createdAt": utcnow(),
                })
            else:
                await self.store.delete_document(marker)
            # Marker writes are idempotent; the counter and its user-set move together
            await self.store.update_counter_and_members(
                REELS, video.id, "repostsCount", 1 if add else -1, "repostsUsers", viewer.user_id, add
            )

        def current():
            return video.reposts_count, list(video.reposts_users)

        def apply(value):
            video.reposts_count, video.reposts_users = value

        if add:
            updated = (video.reposts_count + 1, [*video.reposts_users, viewer.user_id])
        else:
            updated = (max(0, video.reposts_count - 1), [u for u in video.reposts_users if u != viewer.user_id])
        return await optimistic_update(current, apply, updated, write, label=f"repost {video.id}")

    async def load_following(self) -> Set[str]:
        """Refreshes the followed-author set; keeps the old one if the fetch fails."""
        if self.viewer is None:
            return set()
        try:
            self.following = set(await self.store.fetch_followed_author_ids(self.viewer.user_id))
        except Exception as e:
            logger.error(f"Error loading followed authors: {e}")
        return self.following

    def is_following(self, author_id: str) -> bool:
        return author_id in self.following

    async def follow(self, author_id: str) -> ActionResult:
        return await self._set_follow(author_id, True)

    async def unfollow(self, author_id: str) -> ActionResult:
        return await self._set_follow(author_id, False)

    async def toggle_follow(self, author_id: str) -> ActionResult:
        return await self._set_follow(author_id, not self.is_following(author_id))

    async def _set_follow(self, author_id: str, add: bool) -> ActionResult:
        if self.viewer is None:
            return ActionResult.LOGIN_REQUIRED
        uid = self.viewer.user_id
        if author_id == uid or (author_id in self.following) == add:
            return ActionResult.UNCHANGED
        follower_edge = f"followers/{author_id}/userFollowers/{uid}"
        following_edge = f"followers/{uid}/userFollowing/{author_id}"

        async def write():
            if add:
                edge = {"followedUserId": author_id, "followerId": uid, "createdAt": utcnow()}
                await self.store.set_document(follower_edge, edge)
                await self.store.set_document(following_edge, edge)
            else:
                await self.store.delete_document(follower_edge)
                await self.store.delete_document(following_edge)

        updated = self.following | {author_id} if add else self.following - {author_id}
        return await optimistic_update(
            lambda: set(self.following),
            lambda value: setattr(self, "following", value),
            updated,
            write,
            label=f"follow {author_id}",
        )

    async def block(self, author_id: str) -> ActionResult:
        """Adds the author to the viewer's block list; their reels leave the feed."""
        if self.viewer is None:
            return ActionResult.LOGIN_REQUIRED
        if author_id == self.viewer.user_id:
            return ActionResult.UNCHANGED
        try:
            await self.store.toggle_set_membership("blockedUsers", self.viewer.user_id, "blocked", author_id, True)
        except Exception as e:
            logger.error(f"Error blocking {author_id}: {e}")
            return ActionResult.REVERTED
        return ActionResult.APPLIED

    async def unblock(self, author_id: str) -> ActionResult:
        if self.viewer is None:
            return ActionResult.LOGIN_REQUIRED
        try:
            await self.store.toggle_set_membership("blockedUsers", self.viewer.user_id, "blocked", author_id, False)
        except Exception as e:
            logger.error(f"Error unblocking {author_id}: {e}")
            return ActionResult.REVERTED
        return ActionResult.APPLIED

    async def report(self, video_id: str, reason: str) -> ActionResult:
        """Files a moderation report against a reel. Nothing changes locally."""
        if self.viewer is None:
            return ActionResult.LOGIN_REQUIRED
        reason = (reason or "").strip()
        if not reason:
            raise ValueError("A report needs a reason")
        try:
            await self.store.add_document("reports", {
                "reelId": video_id,
                "userId": self.viewer.user_id,
                "reason": reason,
                "createdAt": utcnow(),
            })
        except Exception as e:
            logger.error(f"Error reporting reel {video_id}: {e}")
            return ActionResult.REVERTED
        logger.info(f"Reel {video_id} reported by {self.viewer.user_id}")
        return ActionResult.APPLIED


async def load_blocked_ids(store: DocumentStore, viewer_id: Optional[str]) -> Set[str]:
    if not viewer_id:
        return set()
    try:
        doc = await store.get_document(f"blockedUsers/{viewer_id}")
    except Exception as e:
        logger.error(f"Error loading block list: {e}")
        return set()
    return set((doc or {}).get("blocked") or [])
