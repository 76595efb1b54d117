"""Input schemas and validators for the label's posts, assistant, toolkit and roster."""

from datetime import datetime
from typing import Any, Literal, Optional, TypeVar
from uuid import UUID

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from labelhub.errors import ValidationError

REJECTION_REASON_MAX = 500
COMMENT_MAX = 1000
PROMPT_FRAGMENT_MAX = 3000

SLUG_PATTERN = r"^[a-z0-9]+(-[a-z0-9]+)*$"
COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

Platform = Literal[
    "instagram_feed", "instagram_story", "instagram_reel",
    "tiktok", "youtube", "youtube_shorts",
    "facebook", "twitter", "spotify",
]

GuidelineItemType = Literal["permanent", "campaign"]

ModelT = TypeVar("ModelT", bound=BaseModel)


class PostCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    caption: Optional[str] = Field(default=None, max_length=2200)
    hashtags: Optional[str] = Field(default=None, max_length=500)
    platform: Platform
    artist_id: UUID
    scheduled_at: datetime


class PostUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    caption: Optional[str] = Field(default=None, max_length=2200)
    hashtags: Optional[str] = Field(default=None, max_length=500)
    platform: Optional[Platform] = None
    scheduled_at: Optional[datetime] = None

    @field_validator("title", "platform", "scheduled_at")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        # Fields may be omitted from a partial update but never cleared
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class CommentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(min_length=1, max_length=COMMENT_MAX)


class AgentConfigUpdate(BaseModel):
    is_enabled: Optional[bool] = None
    model: Optional[str] = Field(default=None, min_length=1)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, ge=100, le=4096)
    daily_message_limit: Optional[int] = Field(default=None, ge=1, le=100)
    prompt_identity: Optional[str] = Field(default=None, max_length=PROMPT_FRAGMENT_MAX)
    prompt_activity: Optional[str] = Field(default=None, max_length=PROMPT_FRAGMENT_MAX)
    prompt_ontology: Optional[str] = Field(default=None, max_length=PROMPT_FRAGMENT_MAX)
    prompt_marketing: Optional[str] = Field(default=None, max_length=PROMPT_FRAGMENT_MAX)
    prompt_boundaries: Optional[str] = Field(default=None, max_length=PROMPT_FRAGMENT_MAX)
    prompt_extra: Optional[str] = Field(default=None, max_length=PROMPT_FRAGMENT_MAX)

    @field_validator("is_enabled", "model", "temperature", "max_tokens", "daily_message_limit")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class SectionCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    slug: Optional[str] = Field(default=None, max_length=200, pattern=SLUG_PATTERN)
    description: Optional[str] = Field(default=None, max_length=1000)
    icon: str = Field(default="book-open", min_length=1, max_length=50)
    sort_order: int = Field(default=0, ge=0)


class GuidelineItemCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    section_id: UUID
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    item_type: GuidelineItemType
    priority: int = Field(default=0, ge=0, le=2)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    target_all: bool = True
    target_artist_ids: list[UUID] = []
    attachment_url: Optional[str] = None
    attachment_name: Optional[str] = None

    @model_validator(mode="after")
    def check_window_and_targets(self) -> "GuidelineItemCreate":
        if self.valid_from and self.valid_until and self.valid_from >= self.valid_until:
            raise ValueError("valid_from must be before valid_until")
        if not self.target_all and not self.target_artist_ids:
            raise ValueError("target_artist_ids is required when target_all is false")
        return self


class GuidelineItemUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    content: Optional[str] = Field(default=None, min_length=1)
    item_type: Optional[GuidelineItemType] = None
    priority: Optional[int] = Field(default=None, ge=0, le=2)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    target_all: Optional[bool] = None
    target_artist_ids: Optional[list[UUID]] = None
    attachment_url: Optional[str] = None
    attachment_name: Optional[str] = None

    @field_validator("title", "content", "item_type", "priority", "target_all", "target_artist_ids")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class ArtistCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=320, pattern=EMAIL_PATTERN)
    display_name: str = Field(min_length=1, max_length=100)
    artist_name: str = Field(min_length=1, max_length=100)
    color: str = Field(default="#6366F1", pattern=COLOR_PATTERN)
    bio: Optional[str] = Field(default=None, max_length=2000)
    instagram_handle: Optional[str] = None
    tiktok_handle: Optional[str] = None
    youtube_handle: Optional[str] = None
    spotify_url: Optional[str] = None


class ArtistUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    artist_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)
    bio: Optional[str] = Field(default=None, max_length=2000)
    instagram_handle: Optional[str] = None
    tiktok_handle: Optional[str] = None
    youtube_handle: Optional[str] = None
    spotify_url: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("artist_name", "color", "is_active")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


def parse(model: type[ModelT], data: Any) -> ModelT:
    """Validate ``data`` against ``model``, raising the app's ValidationError."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        fields = {".".join(str(p) for p in err["loc"]): err["msg"] for err in e.errors()}
        raise ValidationError(f"Invalid {model.__name__}", reason="invalid_fields", details={"fields": fields}) from e


def clean_rejection_reason(reason: Optional[str]) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required", reason="reason_required")
    if len(reason) > REJECTION_REASON_MAX:
        raise ValidationError(
            f"Rejection reason too long (max {REJECTION_REASON_MAX} chars)",
            reason="reason_too_long",
        )
    return reason


def clean_chat_message(raw: Optional[str], max_length: int = 2000) -> str:
    """Trim a chat message and enforce the non-empty / max-length rules."""
    message = (raw or "").strip()
    if not message:
        raise ValidationError("Message is required", reason="message_empty")
    if len(message) > max_length:
        raise ValidationError(
            f"Message too long (max {max_length} chars)",
            reason="message_too_long",
            details={"max_length": max_length, "length": len(message)},
        )
    return message
