import logging
from typing import Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import RedirectResponse, HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware
from google.auth.exceptions import GoogleAuthError

from reelfeed.config import settings
from reelfeed.models import (
    CommentRequest,
    SendMessageRequest,
    CreateSessionRequest,
    AssistantMessageRequest,
    NicknameRequest,
    ReportRequest,
    Video,
)
from reelfeed.services.store import build_mock_store, StoreError
from reelfeed.services.firestore import get_store_client
from reelfeed.services.feed import FeedMode, load_videos
from reelfeed.services.ranking import fetch_reels_by_hashtag, fetch_reels_by_user
from reelfeed.services.engagement import ActionResult, EngagementController, LoginRequired, Viewer
from reelfeed.services.comments import get_comments, add_comment, set_comment_like
from reelfeed.services import messages as dm
from reelfeed.services import assistant
from reelfeed.auth import create_flow, viewer_from_credentials

logger = logging.getLogger(__name__)

app = FastAPI()

# Add session middleware for simple token storage
app.add_middleware(SessionMiddleware, secret_key=settings.SECRET_KEY)

templates = Jinja2Templates(directory="templates")

# Mock mode serves everything from one seeded in-memory store
app.state.mock_store = build_mock_store()

MOCK_VIEWER = {"user_id": "mock_user", "username": "Mock Viewer", "avatar": None}


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    # Remote store failures the route did not handle itself
    logger.error(f"Store error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": "Document store unavailable"})


def get_store(request: Request):
    creds_dict = request.session.get("credentials") or {}
    if settings.MOCK_MODE or creds_dict.get("mock"):
        return request.app.state.mock_store
    return get_store_client({"access_token": creds_dict.get("token")})


def get_viewer(request: Request) -> Optional[Viewer]:
    return Viewer.from_session(request.session.get("viewer"))


def require_viewer(request: Request) -> Viewer:
    viewer = get_viewer(request)
    if viewer is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return viewer


async def load_reel(store, reel_id: str) -> Video:
    try:
        doc = await store.get_document(f"reels/{reel_id}")
    except StoreError as e:
        logger.error(f"Error fetching reel {reel_id}: {e}")
        raise HTTPException(status_code=502, detail="Could not load reel")
    if doc is None:
        raise HTTPException(status_code=404, detail="Reel not found")
    return Video.from_document(doc)


def action_response(result: ActionResult, action: str, payload: dict) -> dict:
    if result == ActionResult.LOGIN_REQUIRED:
        raise HTTPException(status_code=401, detail=f"Login required to {action}")
    if result == ActionResult.REVERTED:
        raise HTTPException(status_code=502, detail=f"Could not {action}")
    return {"status": result.value, **payload}


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return HTMLResponse("")

@app.get("/")
def home(request: Request):
    viewer = request.session.get("viewer")
    return templates.TemplateResponse(
        request=request,
        name="index.html",
        context={"logged_in": viewer is not None, "viewer": viewer},
    )

@app.get("/login")
def login(request: Request):
    if settings.MOCK_MODE:
        return RedirectResponse("/auth/callback?mock=true")

    flow = create_flow()
    authorization_url, state = flow.authorization_url(
        access_type='offline',
        include_granted_scopes='true',
        prompt='consent'
    )
    request.session["state"] = state
    return RedirectResponse(authorization_url)

@app.get("/auth/callback")
def auth_callback(request: Request):
    if request.query_params.get("mock"):
        request.session["credentials"] = {"mock": True, "token": "mock_token"}
        request.session["viewer"] = dict(MOCK_VIEWER)
        return RedirectResponse("/")

    state = request.session.get("state")
    if not state:
        raise HTTPException(status_code=400, detail="State missing")

    flow = create_flow()
    authorization_response = str(request.url)

    # Fix for http vs https mismatch on some setups
    if authorization_response.startswith('http:') and settings.REDIRECT_URI.startswith('https:'):
        authorization_response = authorization_response.replace('http:', 'https:', 1)

    try:
        flow.fetch_token(authorization_response=authorization_response)
        viewer = viewer_from_credentials(flow.credentials)
    except (GoogleAuthError, ValueError) as e:
        logger.error(f"Sign-in failed: {e}")
        raise HTTPException(status_code=401, detail="Sign-in failed")

    creds = flow.credentials
    # Store credentials in session (In prod, store in DB and use session ID)
    request.session["credentials"] = {
        "token": creds.token,
        "refresh_token": creds.refresh_token,
        "scopes": creds.scopes
    }
    request.session["viewer"] = viewer
    return RedirectResponse("/")

@app.get("/api/feed")
async def get_reel_feed(request: Request, mode: FeedMode = FeedMode.DISCOVERY):
    viewer = get_viewer(request)
    if mode == FeedMode.FOLLOWING and viewer is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    viewer_id = viewer.user_id if viewer else None
    try:
        videos = await load_videos(get_store(request), mode, viewer_id)
    except Exception as e:
        # A broken feed degrades to an empty one
        logger.error(f"Error fetching {mode.value} feed: {e}")
        videos = []
    return [v.card(viewer_id) for v in videos]

@app.post("/api/reels/{reel_id}/view")
async def record_view(reel_id: str, request: Request):
    try:
        await get_store(request).increment_counter("reels", reel_id, "views", 1)
    except StoreError as e:
        logger.error(f"Error incrementing views for {reel_id}: {e}")
        return {"status": "error"}
    return {"status": "counted"}

async def _reel_action(request: Request, reel_id: str, action: str):
    store = get_store(request)
    viewer = get_viewer(request)
    video = await load_reel(store, reel_id)
    engagement = EngagementController(store, viewer)
    result = await getattr(engagement, action)(video)
    return action_response(result, action, {"reel": video.card(engagement.viewer_id)})

@app.post("/api/reels/{reel_id}/like")
async def like_reel(reel_id: str, request: Request):
    return await _reel_action(request, reel_id, "like")

@app.delete("/api/reels/{reel_id}/like")
async def unlike_reel(reel_id: str, request: Request):
    return await _reel_action(request, reel_id, "unlike")

@app.post("/api/reels/{reel_id}/favorite")
async def favorite_reel(reel_id: str, request: Request):
    return await _reel_action(request, reel_id, "favorite")

@app.delete("/api/reels/{reel_id}/favorite")
async def unfavorite_reel(reel_id: str, request: Request):
    return await _reel_action(request, reel_id, "unfavorite")

@app.post("/api/reels/{reel_id}/share")
async def share_reel(reel_id: str, request: Request):
    return await _reel_action(request, reel_id, "share")

@app.post("/api/reels/{reel_id}/repost")
async def repost_reel(reel_id: str, request: Request):
    return await _reel_action(request, reel_id, "repost")

@app.delete("/api/reels/{reel_id}/repost")
async def unrepost_reel(reel_id: str, request: Request):
    return await _reel_action(request, reel_id, "unrepost")

@app.post("/api/reels/{reel_id}/report")
async def report_reel(reel_id: str, data: ReportRequest, request: Request):
    store = get_store(request)
    await load_reel(store, reel_id)
    engagement = EngagementController(store, get_viewer(request))
    try:
        result = await engagement.report(reel_id, data.reason)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return action_response(result, "report", {"reel_id": reel_id})

@app.get("/api/hashtags/{tag}/reels")
async def list_hashtag_reels(tag: str, request: Request):
    viewer = get_viewer(request)
    videos = await fetch_reels_by_hashtag(get_store(request), tag)
    return [v.card(viewer.user_id if viewer else None) for v in videos]

@app.get("/api/reels/{reel_id}/comments")
async def list_comments(reel_id: str, request: Request):
    comments = await get_comments(get_store(request), reel_id)
    return [c.model_dump(mode="json") for c in comments]

@app.post("/api/reels/{reel_id}/comments")
async def post_comment(reel_id: str, data: CommentRequest, request: Request):
    store = get_store(request)
    await load_reel(store, reel_id)
    try:
        comment = await add_comment(store, get_viewer(request), reel_id, data.text)
    except LoginRequired as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StoreError as e:
        logger.error(f"Error posting comment on {reel_id}: {e}")
        raise HTTPException(status_code=502, detail="Could not post comment")
    return comment.model_dump(mode="json")

async def _comment_like(request: Request, reel_id: str, comment_id: str, liked: bool):
    try:
        await set_comment_like(get_store(request), get_viewer(request), reel_id, comment_id, liked)
    except LoginRequired as e:
        raise HTTPException(status_code=401, detail=str(e))
    except StoreError as e:
        logger.error(f"Error updating like on comment {comment_id}: {e}")
        raise HTTPException(status_code=502, detail="Could not update comment")
    return {"status": "ok", "liked": liked}

@app.post("/api/reels/{reel_id}/comments/{comment_id}/like")
async def like_comment(reel_id: str, comment_id: str, request: Request):
    return await _comment_like(request, reel_id, comment_id, True)

@app.delete("/api/reels/{reel_id}/comments/{comment_id}/like")
async def unlike_comment(reel_id: str, comment_id: str, request: Request):
    return await _comment_like(request, reel_id, comment_id, False)

@app.get("/api/users/{user_id}/reels")
async def list_user_reels(user_id: str, request: Request):
    viewer = get_viewer(request)
    videos = await fetch_reels_by_user(get_store(request), user_id)
    return [v.card(viewer.user_id if viewer else None) for v in videos]

async def _user_action(request: Request, user_id: str, action: str):
    engagement = EngagementController(get_store(request), get_viewer(request))
    await engagement.load_following()
    result = await getattr(engagement, action)(user_id)
    return action_response(result, action, {"user_id": user_id, "following": engagement.is_following(user_id)})

@app.post("/api/users/{user_id}/follow")
async def follow_user(user_id: str, request: Request):
    return await _user_action(request, user_id, "follow")

@app.delete("/api/users/{user_id}/follow")
async def unfollow_user(user_id: str, request: Request):
    return await _user_action(request, user_id, "unfollow")

@app.post("/api/users/{user_id}/block")
async def block_user(user_id: str, request: Request):
    return await _user_action(request, user_id, "block")

@app.delete("/api/users/{user_id}/block")
async def unblock_user(user_id: str, request: Request):
    return await _user_action(request, user_id, "unblock")

async def _require_participant(store, conv_id: str, viewer: Viewer):
    conversation = await store.get_document(f"conversations/{conv_id}")
    if conversation is None or viewer.user_id not in conversation.get("participants", []):
        raise HTTPException(status_code=404, detail="Conversation not found")

@app.get("/api/conversations")
async def list_conversations(request: Request):
    viewer = require_viewer(request)
    conversations = await dm.get_conversations(get_store(request), viewer.user_id)
    return [c.model_dump(mode="json") for c in conversations]

@app.post("/api/conversations/{other_user_id}")
async def open_conversation(other_user_id: str, request: Request):
    viewer = require_viewer(request)
    try:
        conv_id = await dm.get_or_create_conversation(get_store(request), viewer.user_id, other_user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"id": conv_id}

@app.get("/api/conversations/{conv_id}/messages")
async def list_messages(conv_id: str, request: Request):
    viewer = require_viewer(request)
    store = get_store(request)
    await _require_participant(store, conv_id, viewer)
    messages = await dm.get_messages(store, conv_id)
    return {
        "messages": [m.model_dump(mode="json") for m in messages],
        "unread": dm.unread_count(messages, viewer.user_id),
    }

@app.post("/api/conversations/{conv_id}/messages")
async def post_message(conv_id: str, data: SendMessageRequest, request: Request):
    viewer = require_viewer(request)
    store = get_store(request)
    await _require_participant(store, conv_id, viewer)
    try:
        message_id = await dm.send_message(store, conv_id, viewer.user_id, data.text, data.media_url, data.media_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"id": message_id}

@app.delete("/api/conversations/{conv_id}/messages/{message_id}")
async def delete_message(conv_id: str, message_id: str, request: Request):
    viewer = require_viewer(request)
    store = get_store(request)
    await _require_participant(store, conv_id, viewer)
    await dm.delete_message(store, conv_id, message_id)
    return {"status": "deleted"}

@app.get("/api/conversations/{conv_id}/nicknames/{target_user_id}")
async def get_nickname(conv_id: str, target_user_id: str, request: Request):
    viewer = require_viewer(request)
    nickname = await dm.get_conversation_nickname(get_store(request), conv_id, viewer.user_id, target_user_id)
    return {"user_id": target_user_id, "nickname": nickname}

@app.put("/api/conversations/{conv_id}/nicknames/{target_user_id}")
async def set_nickname(conv_id: str, target_user_id: str, data: NicknameRequest, request: Request):
    viewer = require_viewer(request)
    store = get_store(request)
    await _require_participant(store, conv_id, viewer)
    await dm.set_conversation_nickname(store, conv_id, viewer.user_id, target_user_id, data.nickname)
    return {"user_id": target_user_id, "nickname": (data.nickname or "").strip() or None}

@app.post("/api/conversations/{conv_id}/read")
async def read_messages(conv_id: str, request: Request):
    viewer = require_viewer(request)
    store = get_store(request)
    await _require_participant(store, conv_id, viewer)
    marked = await dm.mark_as_read(store, conv_id, viewer.user_id)
    return {"marked": marked}

@app.get("/api/assistant/sessions")
async def list_chat_sessions(request: Request):
    viewer = require_viewer(request)
    sessions = await assistant.get_sessions(get_store(request), viewer.user_id)
    return [s.model_dump(mode="json") for s in sessions]

@app.post("/api/assistant/sessions")
async def create_chat_session(data: CreateSessionRequest, request: Request):
    viewer = require_viewer(request)
    session_id = await assistant.create_session(get_store(request), viewer.user_id, data.title)
    return {"id": session_id, "title": data.title}

@app.delete("/api/assistant/sessions/{session_id}")
async def delete_chat_session(session_id: str, request: Request):
    viewer = require_viewer(request)
    await assistant.delete_session(get_store(request), viewer.user_id, session_id)
    return {"status": "deleted"}

@app.get("/api/assistant/sessions/{session_id}/messages")
async def list_chat_messages(session_id: str, request: Request):
    viewer = require_viewer(request)
    history = await assistant.get_session_messages(get_store(request), viewer.user_id, session_id)
    return [m.model_dump() for m in history]

@app.post("/api/assistant/sessions/{session_id}/messages")
async def send_chat_message(session_id: str, data: AssistantMessageRequest, request: Request):
    viewer = require_viewer(request)
    try:
        reply = await assistant.chat(get_store(request), viewer.user_id, session_id, data.text)
    except assistant.AssistantUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except assistant.AssistantError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return reply.model_dump()

@app.get("/logout")
def logout(request: Request):
    request.session.clear()
    return RedirectResponse("/")
