"""Popularity ranking for reels.

Score = 3*likes + 2*comments + 2*reposts + 1*favorites + 0.1*views. The score
is only a sort key; it is recomputed on every fetch and never stored.
"""
import logging
from typing import Iterable, List, Optional

from pydantic import ValidationError

from ..config import settings
from ..models import Video
from .store import DocumentStore
from .utils import chunked

logger = logging.getLogger(__name__)

LIKE_WEIGHT = 3
COMMENT_WEIGHT = 2
REPOST_WEIGHT = 2
FAVORITE_WEIGHT = 1
VIEW_WEIGHT = 0.1

# The document store accepts at most 30 values in an "in" filter
IN_FILTER_LIMIT = 30


def popularity_score(video: Video) -> float:
    return (
        video.likes * LIKE_WEIGHT
        + video.comments * COMMENT_WEIGHT
        + video.reposts_count * REPOST_WEIGHT
        + video.favorites * FAVORITE_WEIGHT
        + video.views * VIEW_WEIGHT
    )


def rank_videos(videos: Iterable[Video], limit: Optional[int] = None) -> List[Video]:
    """Sorts by score, highest first. Ties keep their input order."""
    videos = list(videos)
    for video in videos:
        video.popularity_score = popularity_score(video)
    ranked = sorted(videos, key=lambda v: v.popularity_score, reverse=True)
    return ranked[:limit] if limit is not None else ranked


def parse_videos(docs: Iterable[dict]) -> List[Video]:
    """Converts store documents to videos, skipping malformed ones."""
    videos = []
    for doc in docs:
        try:
            videos.append(Video.from_document(doc))
        except ValidationError as e:
            logger.warning(f"Skipping malformed reel {doc.get('id')}: {e}")
    return videos


async def fetch_ranked(store: DocumentStore, window: int = None, limit: int = None) -> List[Video]:
    """Most popular reels among the newest ``window`` (general feed)."""
    window = window or settings.FEED_WINDOW
    limit = limit or settings.FEED_LIMIT
    docs = await store.fetch_candidates(window)
    return rank_videos(parse_videos(docs), limit)


async def fetch_recommended(store: DocumentStore) -> List[Video]:
    return await fetch_ranked(store, settings.RECOMMENDED_WINDOW, settings.RECOMMENDED_LIMIT)


async def fetch_following(store: DocumentStore, viewer_id: str, window: int = None, limit: int = None) -> List[Video]:
    """Ranked reels restricted to authors the viewer follows."""
    window = window or settings.FEED_WINDOW
    limit = limit or settings.FEED_LIMIT

    # 1. Who does the viewer follow
    author_ids = await store.fetch_followed_author_ids(viewer_id)
    if not author_ids:
        return []

    # 2. Candidates per batch of authors
    docs = []
    for batch in chunked(author_ids, IN_FILTER_LIMIT):
        docs.extend(await store.fetch_candidates(window, where=[("userId", "in", batch)]))

    # 3. Merge batches back into one newest-first window
    videos = parse_videos(docs)
    videos.sort(key=lambda v: (v.created_at is not None, v.created_at), reverse=True)
    return rank_videos(videos[:window], limit)


async def fetch_reels_by_user(store: DocumentStore, user_id: str) -> List[Video]:
    """A creator's reels, newest first (profile grid). Empty on fetch errors."""
    if not user_id:
        return []
    try:
        docs = await store.query("reels", where=[("userId", "==", user_id)], order_by="createdAt", descending=True)
    except Exception as e:
        logger.error(f"Error fetching reels of {user_id}: {e}")
        return []
    return parse_videos(docs)


def normalize_hashtag(tag: str) -> str:
    return (tag or "").strip().lstrip("#").lower()


async def fetch_reels_by_hashtag(store: DocumentStore, tag: str, limit: int = 50) -> List[Video]:
    """Newest reels carrying ``tag`` (with or without the leading #). Empty on fetch errors."""
    tag = normalize_hashtag(tag)
    if not tag:
        return []
    try:
        docs = await store.query("reels", where=[("hashtags", "array-contains", tag)],
                                 order_by="createdAt", descending=True, limit=limit)
    except Exception as e:
        logger.error(f"Error fetching reels for #{tag}: {e}")
        return []
    return parse_videos(docs)
