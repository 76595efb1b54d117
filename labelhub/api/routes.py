"""FastAPI REST API for LabelHub."""

import logging
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from labelhub import __version__, artists, toolkit
from labelhub.api.deps import current_actor, register_error_handlers
from labelhub.assistant import agents, chat
from labelhub.auth import Actor
from labelhub.config import get_settings
from labelhub.storage.db import get_session
from labelhub.validation import (
    AgentConfigUpdate,
    ArtistCreate,
    ArtistUpdate,
    CommentCreate,
    GuidelineItemCreate,
    GuidelineItemUpdate,
    PostCreate,
    PostUpdate,
    SectionCreate,
)
from labelhub.workflow import activity, posts
from labelhub.workflow.transitions import allowed_targets

logger = logging.getLogger(__name__)

app = FastAPI(
    title="LabelHub API",
    description="Content calendar and artist AI assistant for a record label",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)


# --- Pydantic request/response models ---

class ArtistResponse(BaseModel):
    id: UUID
    name: str
    color: str = "#6366F1"
    bio: Optional[str] = None
    instagram_handle: Optional[str] = None
    tiktok_handle: Optional[str] = None
    youtube_handle: Optional[str] = None
    spotify_url: Optional[str] = None

    model_config = {"from_attributes": True}


class PostResponse(BaseModel):
    id: UUID
    title: str
    caption: Optional[str] = None
    hashtags: Optional[str] = None
    platform: str
    status: str
    artist_id: UUID
    created_by: UUID
    scheduled_at: datetime
    published_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    allowed_targets: list[str] = []

    model_config = {"from_attributes": True}


class TransitionRequest(BaseModel):
    target_status: str
    reason: Optional[str] = None


class HistoryResponse(BaseModel):
    id: UUID
    user_id: UUID
    action: str
    details: Optional[dict] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CommentResponse(BaseModel):
    id: UUID
    user_id: UUID
    content: str
    is_system: bool = False
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NotificationResponse(BaseModel):
    id: UUID
    type: str
    title: str
    body: str = ""
    data: Optional[dict] = None
    read: bool = False
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CountResponse(BaseModel):
    count: int


class ChatRequest(BaseModel):
    message: Optional[str] = None


class UsageResponse(BaseModel):
    daily_limit: int
    used_today: int
    remaining: int
    is_enabled: bool = True

    model_config = {"from_attributes": True}


class ChatReplyResponse(BaseModel):
    reply: str
    session_id: UUID
    usage: UsageResponse

    model_config = {"from_attributes": True}


class ChatMessageResponse(BaseModel):
    id: UUID
    position: int
    role: str
    content: str
    tokens_used: Optional[int] = None
    model_used: Optional[str] = None
    response_time_ms: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ChatSessionResponse(BaseModel):
    id: UUID
    artist_id: UUID
    context_date: date
    title: Optional[str] = None
    message_count: int = 0
    total_tokens: int = 0
    last_message_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AgentConfigResponse(BaseModel):
    artist_id: UUID
    is_enabled: bool = False
    model: str
    temperature: float
    max_tokens: int
    daily_message_limit: int
    prompt_identity: Optional[str] = None
    prompt_activity: Optional[str] = None
    prompt_ontology: Optional[str] = None
    prompt_marketing: Optional[str] = None
    prompt_boundaries: Optional[str] = None
    prompt_extra: Optional[str] = None
    configured_by: Optional[UUID] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ToggleRequest(BaseModel):
    enabled: bool


class ArtistUsageResponse(BaseModel):
    artist_id: UUID
    artist_name: str
    is_enabled: bool
    daily_limit: int
    used_today: int
    used_7d: int
    used_30d: int
    tokens_30d: int
    sessions: int

    model_config = {"from_attributes": True}


class RosterEntryResponse(ArtistResponse):
    user_id: Optional[UUID] = None
    is_active: bool = True
    email: Optional[str] = None
    display_name: Optional[str] = None
    ai_enabled: bool = False
    created_at: Optional[datetime] = None


class SectionResponse(BaseModel):
    id: UUID
    title: str
    slug: str
    description: Optional[str] = None
    icon: str = "book-open"
    sort_order: int = 0
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class GuidelineItemResponse(BaseModel):
    id: UUID
    section_id: UUID
    title: str
    content: str
    item_type: str
    priority: int = 0
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    target_all: bool = True
    target_artist_ids: list[UUID] = []
    attachment_url: Optional[str] = None
    attachment_name: Optional[str] = None
    created_by: UUID
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    section_title: str = ""
    section_slug: str = ""
    is_read: bool = False

    model_config = {"from_attributes": True}


def _post_out(post, actor: Actor) -> PostResponse:
    out = PostResponse.model_validate(post)
    out.allowed_targets = allowed_targets(actor, post.artist_id, post.status)
    return out


def _roster_out(entry: artists.RosterEntry) -> RosterEntryResponse:
    out = RosterEntryResponse.model_validate(entry.artist)
    out.email = entry.email
    out.display_name = entry.display_name
    out.ai_enabled = entry.ai_enabled
    return out


def _guideline_out(entry: toolkit.GuidelineEntry) -> GuidelineItemResponse:
    out = GuidelineItemResponse.model_validate(entry.item)
    out.target_artist_ids = entry.target_artist_ids
    out.section_title = entry.section.title
    out.section_slug = entry.section.slug
    out.is_read = entry.is_read
    return out


# --- Endpoints ---

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/artists", response_model=list[ArtistResponse])
async def list_artists(actor: Actor = Depends(current_actor)):
    """Artists that posts can be scheduled for."""
    async with get_session() as session:
        return await artists.list_assignable_artists(session, actor)


# --- Posts ---

@app.post("/posts", response_model=PostResponse, status_code=201)
async def create_post(request: PostCreate, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        post = await posts.create_post(session, actor, request)
        return _post_out(post, actor)


@app.get("/posts/pending/count", response_model=CountResponse)
async def pending_posts(actor: Actor = Depends(current_actor)):
    """Posts waiting for an artist's approval."""
    async with get_session() as session:
        return CountResponse(count=await posts.pending_count(session, actor))


@app.get("/posts/{post_id}", response_model=PostResponse)
async def get_post(post_id: UUID, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        post = await posts.get_post(session, actor, post_id)
        return _post_out(post, actor)


@app.patch("/posts/{post_id}", response_model=PostResponse)
async def update_post(post_id: UUID, request: PostUpdate, actor: Actor = Depends(current_actor)):
    """Edit a draft or rejected post. Editing a rejected post resubmits it as a draft."""
    async with get_session() as session:
        post = await posts.update_post(session, actor, post_id, request)
        return _post_out(post, actor)


@app.delete("/posts/{post_id}", status_code=204)
async def delete_post(post_id: UUID, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        await posts.delete_post(session, actor, post_id)
    return Response(status_code=204)


@app.post("/posts/{post_id}/transition", response_model=PostResponse)
async def transition_post(post_id: UUID, request: TransitionRequest, actor: Actor = Depends(current_actor)):
    """Move a post through the review workflow."""
    async with get_session() as session:
        post = await posts.transition_post(session, actor, post_id, request.target_status, request.reason)
        return _post_out(post, actor)


@app.get("/posts/{post_id}/history", response_model=list[HistoryResponse])
async def post_history(post_id: UUID, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        await posts.get_post(session, actor, post_id)
        return await activity.list_history(session, post_id)


@app.get("/posts/{post_id}/comments", response_model=list[CommentResponse])
async def list_comments(post_id: UUID, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await activity.list_comments(session, actor, post_id)


@app.post("/posts/{post_id}/comments", response_model=CommentResponse, status_code=201)
async def add_comment(post_id: UUID, request: CommentCreate, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await activity.add_comment(session, actor, post_id, request)


@app.get("/calendar", response_model=list[PostResponse])
async def calendar(
    year: int = Query(...),
    month: int = Query(..., ge=1, le=12),
    artist_id: Optional[UUID] = Query(None),
    platform: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    actor: Actor = Depends(current_actor),
):
    """Posts scheduled in a month."""
    async with get_session() as session:
        found = await posts.list_calendar(session, actor, year, month, artist_id, platform, status)
        return [_post_out(p, actor) for p in found]


# --- Notifications ---

@app.get("/notifications", response_model=list[NotificationResponse])
async def list_notifications(actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await activity.list_notifications(session, actor)


@app.get("/notifications/unread/count", response_model=CountResponse)
async def unread_notifications(actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return CountResponse(count=await activity.unread_count(session, actor))


@app.post("/notifications/read-all", response_model=CountResponse)
async def mark_all_notifications_read(actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return CountResponse(count=await activity.mark_all_read(session, actor))


@app.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(notification_id: UUID, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await activity.mark_read(session, actor, notification_id)


# --- AI assistant ---

@app.post("/chat/{artist_id}/messages", response_model=ChatReplyResponse)
async def send_chat_message(artist_id: UUID, request: ChatRequest, actor: Actor = Depends(current_actor)):
    """Send one message to the artist's assistant."""
    async with get_session() as session:
        return await chat.send_message(session, artist_id, request.message, actor=actor)


@app.get("/chat/{artist_id}/usage", response_model=UsageResponse)
async def chat_usage(artist_id: UUID, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await chat.get_remaining_messages(session, artist_id, actor=actor)


@app.get("/chat/{artist_id}/today", response_model=list[ChatMessageResponse])
async def chat_today(artist_id: UUID, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await chat.todays_messages(session, actor, artist_id)


@app.get("/chat/{artist_id}/sessions", response_model=list[ChatSessionResponse])
async def chat_sessions(
    artist_id: UUID,
    limit: int = Query(30, le=100),
    actor: Actor = Depends(current_actor),
):
    async with get_session() as session:
        return await chat.list_sessions(session, actor, artist_id, limit)


@app.get("/chat/sessions/{session_id}/messages", response_model=list[ChatMessageResponse])
async def chat_session_messages(session_id: UUID, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await chat.session_messages(session, actor, session_id)


# --- Agent configuration (staff) ---

@app.get("/agents/usage", response_model=list[ArtistUsageResponse])
async def agents_usage(actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await agents.usage_stats(session, actor)


@app.get("/agents/{artist_id}/config", response_model=AgentConfigResponse)
async def get_agent_config(artist_id: UUID, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await agents.get_config(session, actor, artist_id)


@app.put("/agents/{artist_id}/config", response_model=AgentConfigResponse)
async def update_agent_config(
    artist_id: UUID, request: AgentConfigUpdate, actor: Actor = Depends(current_actor)
):
    async with get_session() as session:
        return await agents.update_config(session, actor, artist_id, request)


@app.post("/agents/{artist_id}/toggle", response_model=AgentConfigResponse)
async def toggle_agent(artist_id: UUID, request: ToggleRequest, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await agents.toggle_ai(session, actor, artist_id, request.enabled)


# --- Artist management (staff) ---

@app.get("/admin/artists", response_model=list[RosterEntryResponse])
async def admin_list_artists(actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return [_roster_out(e) for e in await artists.list_roster(session, actor)]


@app.post("/admin/artists", response_model=RosterEntryResponse, status_code=201)
async def admin_create_artist(request: ArtistCreate, actor: Actor = Depends(current_actor)):
    """Create an artist's account, roster entry and assistant config."""
    async with get_session() as session:
        return _roster_out(await artists.create_artist(session, actor, request))


@app.patch("/admin/artists/{artist_id}", response_model=ArtistResponse)
async def admin_update_artist(artist_id: UUID, request: ArtistUpdate, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await artists.update_artist(session, actor, artist_id, request)


@app.delete("/admin/artists/{artist_id}", status_code=204)
async def admin_delete_artist(artist_id: UUID, actor: Actor = Depends(current_actor)):
    """Deactivate an artist and remove their login account."""
    async with get_session() as session:
        await artists.delete_artist(session, actor, artist_id)
    return Response(status_code=204)


# --- Toolkit ---

@app.get("/toolkit/sections", response_model=list[SectionResponse])
async def toolkit_sections(actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await toolkit.list_sections(session)


@app.post("/toolkit/sections", response_model=SectionResponse, status_code=201)
async def create_toolkit_section(request: SectionCreate, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await toolkit.create_section(session, actor, request)


@app.get("/toolkit/sections/{section_id}", response_model=SectionResponse)
async def toolkit_section(section_id: UUID, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return await toolkit.get_section(session, section_id)


@app.post("/toolkit/sections/{section_id}/read", response_model=CountResponse)
async def mark_toolkit_section_read(section_id: UUID, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return CountResponse(count=await toolkit.mark_section_read(session, actor, section_id))


@app.get("/toolkit/items", response_model=list[GuidelineItemResponse])
async def toolkit_items(section_id: Optional[UUID] = Query(None), actor: Actor = Depends(current_actor)):
    """Guidelines visible to the caller, highest priority first."""
    async with get_session() as session:
        return [_guideline_out(e) for e in await toolkit.list_items(session, actor, section_id)]


@app.post("/toolkit/items", response_model=GuidelineItemResponse, status_code=201)
async def create_toolkit_item(request: GuidelineItemCreate, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return _guideline_out(await toolkit.create_item(session, actor, request))


@app.patch("/toolkit/items/{item_id}", response_model=GuidelineItemResponse)
async def update_toolkit_item(item_id: UUID, request: GuidelineItemUpdate, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return _guideline_out(await toolkit.update_item(session, actor, item_id, request))


@app.delete("/toolkit/items/{item_id}", status_code=204)
async def delete_toolkit_item(item_id: UUID, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        await toolkit.delete_item(session, actor, item_id)
    return Response(status_code=204)


@app.post("/toolkit/items/{item_id}/read", status_code=204)
async def mark_toolkit_item_read(item_id: UUID, actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        await toolkit.mark_read(session, actor, item_id)
    return Response(status_code=204)


@app.get("/toolkit/unread/count", response_model=CountResponse)
async def toolkit_unread(section_id: Optional[UUID] = Query(None), actor: Actor = Depends(current_actor)):
    async with get_session() as session:
        return CountResponse(count=await toolkit.unread_count(session, actor, section_id))
