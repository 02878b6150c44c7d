from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .services.utils import format_age, format_count


def _unique(ids):
    """Drops repeated ids, keeping first-seen order."""
    seen = set()
    result = []
    for uid in ids or []:
        if uid not in seen:
            seen.add(uid)
            result.append(uid)
    return result


class StoredModel(BaseModel):
    # Stored documents use camelCase field names
    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_document(cls, doc: dict):
        return cls.model_validate(doc)


class Video(StoredModel):
    id: str
    user_id: str = Field(alias="userId")
    video_url: str = Field(alias="videoUrl")
    thumbnail_url: Optional[str] = Field(default=None, alias="thumbnailUrl")
    slides: Optional[List[str]] = None
    description: str = Field(default="", alias="desc")
    username: str = "Anonymous"
    avatar: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    likes_users: List[str] = Field(default_factory=list, alias="likesUsers")
    favorites_users: List[str] = Field(default_factory=list, alias="favoritesUsers")
    reposts_users: List[str] = Field(default_factory=list, alias="repostsUsers")
    hashtags: List[str] = Field(default_factory=list)
    comments: int = 0
    views: int = 0
    shares: int = 0
    reposts_count: int = Field(default=0, alias="repostsCount")
    # Derived by the ranker, never written back
    popularity_score: Optional[float] = Field(default=None, exclude=True)

    @field_validator("likes_users", "favorites_users", "reposts_users", mode="before")
    @classmethod
    def dedupe_user_sets(cls, value):
        return _unique(value)

    @field_validator("hashtags", mode="before")
    @classmethod
    def normalize_hashtags(cls, value):
        # Stored lowercase without the leading #
        tags = (str(tag).strip().lstrip("#").lower() for tag in value or [])
        return _unique(tag for tag in tags if tag)

    @field_validator("comments", "views", "shares", "reposts_count", mode="before")
    @classmethod
    def missing_counter(cls, value):
        return value or 0

    @property
    def likes(self) -> int:
        return len(self.likes_users)

    @property
    def favorites(self) -> int:
        return len(self.favorites_users)

    @property
    def is_slideshow(self) -> bool:
        return bool(self.slides)

    def card(self, viewer_id: Optional[str] = None) -> dict:
        """Flattens the video into the shape the feed UI renders."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.username,
            "avatar": self.avatar,
            "video_url": self.video_url,
            "thumbnail_url": self.thumbnail_url or self.video_url,
            "slides": self.slides or [],
            "description": self.description,
            "hashtags": self.hashtags,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "age": format_age(self.created_at),
            "likes": self.likes,
            "favorites": self.favorites,
            "comments": self.comments,
            "views": self.views,
            "views_label": format_count(self.views),
            "shares": self.shares,
            "reposts": self.reposts_count,
            "score": self.popularity_score,
            "liked": viewer_id in self.likes_users if viewer_id else False,
            "favorited": viewer_id in self.favorites_users if viewer_id else False,
        }


class Comment(StoredModel):
    id: str
    text: str
    user_id: str = Field(alias="userId")
    username: str = "Anonymous"
    avatar: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    likes_users: List[str] = Field(default_factory=list, alias="likesUsers")

    @field_validator("likes_users", mode="before")
    @classmethod
    def dedupe_likes(cls, value):
        return _unique(value)


class Message(StoredModel):
    id: str
    sender_id: str = Field(alias="senderId")
    text: str = ""
    media_url: Optional[str] = Field(default=None, alias="mediaUrl")
    media_type: Optional[str] = Field(default=None, alias="mediaType")
    read: bool = False
    read_by: List[str] = Field(default_factory=list, alias="readBy")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @field_validator("read_by", mode="before")
    @classmethod
    def dedupe_readers(cls, value):
        return _unique(value)


class Conversation(StoredModel):
    id: str
    participants: List[str] = Field(default_factory=list)
    last_message: str = Field(default="", alias="lastMessage")
    last_message_time: Optional[datetime] = Field(default=None, alias="lastMessageTime")


class ChatSession(StoredModel):
    id: str
    title: str = "New Chat"
    last_message: str = Field(default="", alias="lastMessage")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class ChatMessage(BaseModel):
    role: str  # "user" or "assistant"
    content: str


class CommentRequest(BaseModel):
    text: str

class SendMessageRequest(BaseModel):
    text: str = ""
    media_url: Optional[str] = None
    media_type: Optional[str] = None

class ReportRequest(BaseModel):
    reason: str

class NicknameRequest(BaseModel):
    nickname: Optional[str] = None

class CreateSessionRequest(BaseModel):
    title: str = "New Chat"

class AssistantMessageRequest(BaseModel):
    text: str
