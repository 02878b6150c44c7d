"""Direct messages between two users, with per-reader read tracking."""
import logging
from typing import Callable, Iterable, List, Optional

from pydantic import ValidationError

from ..models import Conversation, Message
from .store import DocumentStore, Unsubscribe
from .utils import utcnow

logger = logging.getLogger(__name__)

MEDIA_PREVIEWS = {"image": "📷 Image", "video": "🎥 Video"}


def conversation_id(user_a: str, user_b: str) -> str:
    """Same id whichever participant opens the conversation."""
    return "_".join(sorted([user_a, user_b]))


def _messages_path(conv_id: str) -> str:
    return f"conversations/{conv_id}/messages"


def _parse_messages(docs) -> List[Message]:
    messages = []
    for doc in docs:
        try:
            messages.append(Message.from_document(doc))
        except ValidationError as e:
            logger.warning(f"Skipping malformed message {doc.get('id')}: {e}")
    return messages


async def get_or_create_conversation(store: DocumentStore, user_a: str, user_b: str) -> str:
    if not user_a or not user_b or user_a == user_b:
        raise ValueError("A conversation needs two different users")
    conv_id = conversation_id(user_a, user_b)
    path = f"conversations/{conv_id}"
    if await store.get_document(path) is None:
        now = utcnow()
        await store.set_document(path, {
            "participants": sorted([user_a, user_b]),
            "lastMessage": "",
            "lastMessageTime": now,
            "createdAt": now,
            "updatedAt": now,
        })
    return conv_id


async def send_message(store: DocumentStore, conv_id: str, sender_id: str, text: str = "",
                       media_url: Optional[str] = None, media_type: Optional[str] = None) -> str:
    if not conv_id or not sender_id or (not text and not media_url):
        raise ValueError("Invalid message")

    now = utcnow()
    message_id = await store.add_document(_messages_path(conv_id), {
        "senderId": sender_id,
        "text": text or "",
        "mediaUrl": media_url,
        "mediaType": media_type,
        "read": False,
        "readBy": [],
        "createdAt": now,
    })

    # Conversation list preview
    preview = text or MEDIA_PREVIEWS.get(media_type, "📎 File")
    await store.set_document(f"conversations/{conv_id}", {
        "lastMessage": preview,
        "lastMessageTime": now,
        "updatedAt": now,
    }, merge=True)
    return message_id


async def get_messages(store: DocumentStore, conv_id: str, limit: int = 50) -> List[Message]:
    """Newest ``limit`` messages in chronological order. Empty on fetch errors."""
    try:
        docs = await store.query(_messages_path(conv_id), order_by="createdAt", descending=True, limit=limit)
    except Exception as e:
        logger.error(f"Error fetching messages for {conv_id}: {e}")
        return []
    return list(reversed(_parse_messages(docs)))


def subscribe_to_messages(store: DocumentStore, conv_id: str,
                          callback: Callable[[List[Message]], None]) -> Unsubscribe:
    """Live message list for a conversation. Call the returned handle to stop."""
    return store.subscribe(
        _messages_path(conv_id),
        lambda docs: callback(_parse_messages(docs)),
        order_by="createdAt",
    )


def is_unread(message: Message, user_id: str) -> bool:
    return message.sender_id != user_id and user_id not in message.read_by


def unread_count(messages: Iterable[Message], user_id: str) -> int:
    return sum(1 for m in messages if is_unread(m, user_id))


async def mark_as_read(store: DocumentStore, conv_id: str, user_id: str,
                       messages: Optional[Iterable[Message]] = None) -> int:
    """Adds the reader to ``readBy`` of every unread message. Returns how many changed."""
    if messages is None:
        try:
            docs = await store.query(_messages_path(conv_id), where=[("read", "==", False)])
        except Exception as e:
            logger.error(f"Error loading unread messages for {conv_id}: {e}")
            return 0
        messages = _parse_messages(docs)

    marked = 0
    for message in messages:
        if not is_unread(message, user_id):
            continue
        try:
            await store.toggle_set_membership(_messages_path(conv_id), message.id, "readBy", user_id, True)
            await store.set_document(f"{_messages_path(conv_id)}/{message.id}", {"read": True}, merge=True)
        except Exception as e:
            logger.error(f"Error marking message {message.id} as read: {e}")
            continue
        message.read = True
        message.read_by.append(user_id)
        marked += 1
    return marked


def _sort_conversations(docs) -> List[Conversation]:
    conversations = [Conversation.from_document(doc) for doc in docs]
    # Sorted here to avoid needing a composite index
    conversations.sort(key=lambda c: (c.last_message_time is not None, c.last_message_time), reverse=True)
    return conversations


async def get_conversations(store: DocumentStore, user_id: str) -> List[Conversation]:
    """Conversations the user takes part in, most recent first."""
    try:
        docs = await store.query("conversations", where=[("participants", "array-contains", user_id)])
    except Exception as e:
        logger.error(f"Error fetching conversations: {e}")
        return []
    return _sort_conversations(docs)


def subscribe_to_conversations(store: DocumentStore, user_id: Optional[str],
                               callback: Callable[[List[Conversation]], None]) -> Unsubscribe:
    """Live conversation list, most recent first. A no-op handle without a user."""
    if not user_id:
        return lambda: None
    return store.subscribe(
        "conversations",
        lambda docs: callback(_sort_conversations(docs)),
        where=[("participants", "array-contains", user_id)],
    )


async def delete_message(store: DocumentStore, conv_id: str, message_id: str) -> None:
    if not conv_id or not message_id:
        raise ValueError("Conversation and message ids are required")
    await store.delete_document(f"{_messages_path(conv_id)}/{message_id}")


def _nicknames_path(conv_id: str, user_id: str) -> str:
    # One document per viewer: their private names for the other participants
    return f"conversations/{conv_id}/nicknames/{user_id}"


async def set_conversation_nickname(store: DocumentStore, conv_id: str, user_id: str, target_user_id: str,
                                    nickname: Optional[str]) -> None:
    """Names ``target_user_id`` for ``user_id`` only. A blank nickname clears it."""
    if not conv_id or not user_id or not target_user_id:
        raise ValueError("Conversation, user and target ids are required")
    nickname = (nickname or "").strip() or None
    await store.set_document(_nicknames_path(conv_id, user_id), {
        target_user_id: nickname,
        "updatedAt": utcnow(),
    }, merge=True)


async def get_conversation_nickname(store: DocumentStore, conv_id: str, user_id: str,
                                    target_user_id: str) -> Optional[str]:
    if not conv_id or not user_id or not target_user_id:
        return None
    try:
        doc = await store.get_document(_nicknames_path(conv_id, user_id))
    except Exception as e:
        logger.error(f"Error loading nickname in {conv_id}: {e}")
        return None
    return (doc or {}).get(target_user_id)
