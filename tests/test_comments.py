from datetime import datetime, timedelta, timezone

import pytest

from reelfeed.services.comments import add_comment, get_comments, set_comment_like
from reelfeed.services.engagement import LoginRequired, Viewer


@pytest.fixture
def viewer():
    return Viewer(user_id="me", username="Me", avatar="me.png")


@pytest.mark.asyncio
async def test_add_comment_stores_and_counts(store, seed_reels, viewer):
    await seed_reels(store, {"id": "r1", "comments": 2})
    comment = await add_comment(store, viewer, "r1", "  great clip  ")
    assert comment.text == "great clip"
    assert comment.user_id == "me"
    assert comment.username == "Me"

    comments = await get_comments(store, "r1")
    assert [c.id for c in comments] == [comment.id]
    assert (await store.get_document("reels/r1"))["comments"] == 3

@pytest.mark.asyncio
async def test_comments_are_oldest_first(store):
    now = datetime.now(timezone.utc)
    await store.set_document("reels/r1/comments/late", {"text": "2", "userId": "a", "createdAt": now})
    await store.set_document("reels/r1/comments/early", {"text": "1", "userId": "b", "createdAt": now - timedelta(minutes=5)})
    await store.set_document("reels/r1/comments/bad", {"userId": "c", "createdAt": now})
    assert [c.id for c in await get_comments(store, "r1")] == ["early", "late"]

@pytest.mark.asyncio
async def test_anonymous_comment_is_rejected(store):
    with pytest.raises(LoginRequired):
        await add_comment(store, None, "r1", "hello")
    assert await get_comments(store, "r1") == []

@pytest.mark.asyncio
async def test_blank_comment_is_rejected(store, viewer):
    with pytest.raises(ValueError):
        await add_comment(store, viewer, "r1", "   ")

@pytest.mark.asyncio
async def test_comment_fetch_failure_is_empty(failing_store):
    failing_store.fail_reads = True
    assert await get_comments(failing_store, "r1") == []

@pytest.mark.asyncio
async def test_comment_like_toggle(store, viewer):
    comment = await add_comment(store, viewer, "r1", "hi")
    await set_comment_like(store, viewer, "r1", comment.id, True)
    await set_comment_like(store, viewer, "r1", comment.id, True)
    assert (await get_comments(store, "r1"))[0].likes_users == ["me"]
    await set_comment_like(store, viewer, "r1", comment.id, False)
    assert (await get_comments(store, "r1"))[0].likes_users == []
    with pytest.raises(LoginRequired):
        await set_comment_like(store, None, "r1", comment.id, True)
