import asyncio
import logging
import re
from typing import List

from openai import OpenAI
import google.generativeai as genai

from ..config import settings
from ..models import ChatMessage, ChatSession
from .store import DocumentStore
from .utils import utcnow

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are the in-app assistant of a short-video social network. "
    "Help people write captions, come up with reel ideas and answer questions about the app.\n"
    "1. Be friendly and direct. Do not start with 'As an AI'.\n"
    "2. Keep answers short enough to read on a phone.\n"
    "3. Reply in the language the user writes in.\n"
    "4. Plain text only. Do NOT use code blocks."
)

# Only the tail of a long session is sent to the model
HISTORY_LIMIT = 20
SNIPPET_LENGTH = 50


class AssistantUnavailable(Exception):
    """No LLM provider is configured."""


class AssistantError(Exception):
    """Every configured provider failed."""


def strip_code_fences(text: str) -> str:
    # Remove ```lang ... ``` or just ``` ... ```
    text = re.sub(r'^```[a-zA-Z]*\s*', '', text)
    text = re.sub(r'\s*```$', '', text)
    return text.strip()


def generate_reply(history: List[ChatMessage]) -> str:
    """Generates the assistant's next message using Gemini (free) or an OpenAI-compatible API."""
    if not settings.GEMINI_API_KEY and not settings.OPENAI_API_KEY:
        raise AssistantUnavailable("No API key set. Set GEMINI_API_KEY or OPENAI_API_KEY in .env")

    history = history[-HISTORY_LIMIT:]
    response_text = ""

    if settings.GEMINI_API_KEY:
        try:
            genai.configure(api_key=settings.GEMINI_API_KEY)
            model = genai.GenerativeModel(settings.GEMINI_MODEL, system_instruction=SYSTEM_INSTRUCTION)
            # Gemini calls the assistant role "model"
            contents = [
                {"role": "model" if m.role == "assistant" else "user", "parts": [m.content]}
                for m in history
            ]
            response = model.generate_content(contents)
            response_text = response.text
        except Exception as e:
            logger.error(f"Gemini Error: {e}")
            if not settings.OPENAI_API_KEY:
                raise AssistantError(f"Gemini Error: {e}") from e

    if not response_text and settings.OPENAI_API_KEY:
        try:
            client = OpenAI(api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL)
            response = client.chat.completions.create(
                model=settings.OPENAI_MODEL,
                messages=[{"role": "system", "content": SYSTEM_INSTRUCTION}]
                + [{"role": m.role, "content": m.content} for m in history],
                temperature=0.7,
                max_tokens=2048,
            )
            response_text = response.choices[0].message.content or ""
        except Exception as e:
            logger.error(f"OpenAI Error: {e}")
            raise AssistantError(f"OpenAI Error: {e}") from e

    if not response_text:
        raise AssistantError("Could not generate a reply.")
    return strip_code_fences(response_text)


def _sessions_path(user_id: str) -> str:
    return f"users/{user_id}/assistant_sessions"


def _session_messages_path(user_id: str, session_id: str) -> str:
    return f"{_sessions_path(user_id)}/{session_id}/messages"


async def create_session(store: DocumentStore, user_id: str, title: str = "New Chat") -> str:
    now = utcnow()
    return await store.add_document(_sessions_path(user_id), {
        "title": title,
        "createdAt": now,
        "updatedAt": now,
    })


async def get_sessions(store: DocumentStore, user_id: str) -> List[ChatSession]:
    """Most recently used sessions first. Empty on fetch errors."""
    try:
        docs = await store.query(_sessions_path(user_id), order_by="updatedAt", descending=True)
    except Exception as e:
        logger.error(f"Error fetching sessions: {e}")
        return []
    return [ChatSession.from_document(doc) for doc in docs]


async def delete_session(store: DocumentStore, user_id: str, session_id: str):
    """Deletes the messages first, then the session itself."""
    messages_path = _session_messages_path(user_id, session_id)
    docs = await store.query(messages_path)
    await asyncio.gather(*[store.delete_document(f"{messages_path}/{doc['id']}") for doc in docs])
    await store.delete_document(f"{_sessions_path(user_id)}/{session_id}")


async def save_message(store: DocumentStore, user_id: str, session_id: str, message: ChatMessage):
    """Stores a message and refreshes the session's timestamp and snippet."""
    now = utcnow()
    await store.add_document(_session_messages_path(user_id, session_id), {
        "role": message.role,
        "content": message.content,
        "timestamp": now,
    })
    snippet = message.content[:SNIPPET_LENGTH] + ("..." if len(message.content) > SNIPPET_LENGTH else "")
    await store.set_document(f"{_sessions_path(user_id)}/{session_id}", {
        "updatedAt": now,
        "lastMessage": snippet,
    }, merge=True)


async def get_session_messages(store: DocumentStore, user_id: str, session_id: str) -> List[ChatMessage]:
    """Oldest first, for chat flow. Empty on fetch errors."""
    try:
        docs = await store.query(_session_messages_path(user_id, session_id), order_by="timestamp")
    except Exception as e:
        logger.error(f"Error fetching session messages: {e}")
        return []
    return [ChatMessage(role=doc.get("role", "user"), content=doc.get("content", "")) for doc in docs]


async def chat(store: DocumentStore, user_id: str, session_id: str, text: str) -> ChatMessage:
    """Records the user's message, asks the model, records and returns the reply."""
    user_message = ChatMessage(role="user", content=text)
    await save_message(store, user_id, session_id, user_message)
    history = await get_session_messages(store, user_id, session_id)
    if not history or history[-1] != user_message:
        history.append(user_message)

    # The provider SDKs are blocking
    reply_text = await asyncio.to_thread(generate_reply, history)
    reply = ChatMessage(role="assistant", content=reply_text)
    await save_message(store, user_id, session_id, reply)
    return reply
