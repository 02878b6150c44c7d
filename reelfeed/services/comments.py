import logging
from typing import List, Optional

from pydantic import ValidationError

from ..models import Comment
from .engagement import LoginRequired, Viewer
from .store import DocumentStore
from .utils import utcnow

logger = logging.getLogger(__name__)

def _comments_path(reel_id: str) -> str:
    return f"reels/{reel_id}/comments"

async def get_comments(store: DocumentStore, reel_id: str) -> List[Comment]:
    """Comments of a reel, oldest first. Empty on fetch errors."""
    try:
        docs = await store.query(_comments_path(reel_id), order_by="createdAt")
    except Exception as e:
        logger.error(f"Error fetching comments for {reel_id}: {e}")
        return []

    comments = []
    for doc in docs:
        try:
            comments.append(Comment.from_document(doc))
        except ValidationError as e:
            logger.warning(f"Skipping malformed comment {doc.get('id')}: {e}")
    return comments

async def add_comment(store: DocumentStore, viewer: Optional[Viewer], reel_id: str, text: str) -> Comment:
    """Posts a comment and bumps the reel's comment counter."""
    if viewer is None:
        raise LoginRequired("Login required to comment")
    text = (text or "").strip()
    if not text:
        raise ValueError("Comment text is empty")

    data = {
        "text": text,
        "userId": viewer.user_id,
        "username": viewer.username,
        "avatar": viewer.avatar,
        "createdAt": utcnow(),
        "likesUsers": [],
    }
    comment_id = await store.add_document(_comments_path(reel_id), data)

    try:
        await store.increment_counter("reels", reel_id, "comments", 1)
    except Exception as e:
        logger.error(f"Error updating comment count for {reel_id}: {e}")

    return Comment.from_document({"id": comment_id, **data})

async def set_comment_like(store: DocumentStore, viewer: Optional[Viewer], reel_id: str, comment_id: str, liked: bool):
    if viewer is None:
        raise LoginRequired("Login required to like comments")
    await store.toggle_set_membership(_comments_path(reel_id), comment_id, "likesUsers", viewer.user_id, liked)
