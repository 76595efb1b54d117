"""Post lifecycle controller: creation, edits, status transitions, deletion."""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from labelhub.auth import Actor
from labelhub.errors import Conflict, Forbidden, InvalidStatusTransition, NotFound, PostLocked, ValidationError
from labelhub.storage.models import Artist, Post, as_utc, utc_now
from labelhub.validation import PostCreate, PostUpdate, clean_rejection_reason
from labelhub.workflow.activity import notify_transition, record_history
from labelhub.workflow.transitions import check_transition, is_authorized

logger = logging.getLogger(__name__)

# Conditional-update attempts before a transition gives up with Conflict
MAX_TRANSITION_ATTEMPTS = 3

EDITABLE_STATUSES = ("draft", "rejected")


async def _reload(session: AsyncSession, post_id: UUID) -> Optional[Post]:
    return await session.get(Post, post_id, populate_existing=True)


async def get_post(session: AsyncSession, actor: Actor, post_id: UUID) -> Post:
    """Fetch a post visible to ``actor`` (staff see all, artists their own)."""
    post = await session.get(Post, post_id)
    if post is None:
        raise NotFound("Post not found")
    if not (actor.is_staff or actor.owns(post.artist_id)):
        raise Forbidden("Not allowed to access this post")
    return post


async def create_post(
    session: AsyncSession,
    actor: Actor,
    data: PostCreate,
    now: Optional[datetime] = None,
) -> Post:
    """Create a draft post for a roster artist (staff only)."""
    if not actor.is_staff:
        raise Forbidden("Only staff can create posts")
    now = now or utc_now()

    artist = await session.get(Artist, data.artist_id)
    if artist is None or artist.is_label or not artist.is_active:
        raise ValidationError("Select an active artist", reason="invalid_artist")
    if as_utc(data.scheduled_at) <= as_utc(now):
        raise ValidationError("Scheduled date must be in the future", reason="scheduled_in_past")

    post = Post(
        title=data.title,
        caption=data.caption or None,
        hashtags=data.hashtags or None,
        platform=data.platform,
        status="draft",
        artist_id=artist.id,
        created_by=actor.user_id,
        scheduled_at=data.scheduled_at,
        created_at=now,
        updated_at=now,
    )
    session.add(post)
    await session.flush()
    await record_history(session, post.id, actor.user_id, "created", {"platform": post.platform})

    logger.info("Post %s created for artist %s by %s", post.id, artist.name, actor.user_id)
    return post


async def update_post(
    session: AsyncSession,
    actor: Actor,
    post_id: UUID,
    data: PostUpdate,
    now: Optional[datetime] = None,
) -> Post:
    """Edit a draft or rejected post (staff only).

    Editing a rejected post is how it gets resubmitted: it goes back to
    ``draft`` and loses its rejection reason.
    """
    if not actor.is_staff:
        raise Forbidden("Only staff can edit posts")
    now = now or utc_now()

    post = await session.get(Post, post_id)
    if post is None:
        raise NotFound("Post not found")
    if post.status not in EDITABLE_STATUSES:
        raise PostLocked(f"Cannot edit a post in status {post.status}")

    values = data.model_dump(exclude_unset=True)
    if not values:
        return post
    if "scheduled_at" in values and as_utc(values["scheduled_at"]) <= as_utc(now):
        raise ValidationError("Scheduled date must be in the future", reason="scheduled_in_past")

    resubmitted = post.status == "rejected"
    values["updated_at"] = now
    if resubmitted:
        values.update(status="draft", rejection_reason=None)

    result = await session.execute(
        update(Post)
        .where(Post.id == post.id, Post.status == post.status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise Conflict("Post changed while it was being edited")

    changed = sorted(k for k in data.model_dump(exclude_unset=True))
    await record_history(
        session, post.id, actor.user_id, "resubmitted" if resubmitted else "edited", {"fields": changed}
    )
    return await _reload(session, post.id)


async def transition_post(
    session: AsyncSession,
    actor: Actor,
    post_id: UUID,
    target_status: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Post:
    """Move a post to ``target_status`` if the table and the actor allow it.

    Status and side-effect fields are written by one conditional UPDATE
    (``WHERE status = <expected>``), so either the whole new state lands or
    none of it. When the condition misses, the post is re-read: if a
    concurrent request already performed this very transition the fresh
    post is returned unchanged, otherwise the request is re-evaluated
    against the new state.
    """
    now = now or utc_now()
    post = await session.get(Post, post_id)
    if post is None:
        raise NotFound("Post not found")

    for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
        try:
            rule = check_transition(actor, post.artist_id, post.status, target_status)
        except InvalidStatusTransition:
            if actor.is_staff or actor.owns(post.artist_id):
                raise
            raise InvalidStatusTransition(None, target_status) from None

        values: dict = {"status": target_status, "updated_at": now}
        if rule.requires_reason:
            values["rejection_reason"] = clean_rejection_reason(reason)
        if rule.sets_published_at:
            values["published_at"] = now

        result = await session.execute(
            update(Post)
            .where(Post.id == post.id, Post.status == rule.from_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            post = await _reload(session, post.id)
            details = {"from": rule.from_status, "to": target_status}
            if rule.requires_reason:
                details["reason"] = post.rejection_reason
            await record_history(session, post.id, actor.user_id, rule.action, details)
            await notify_transition(session, post, target_status)
            logger.info("Post %s: %s -> %s by %s", post.id, rule.from_status, target_status, actor.user_id)
            return post

        fresh = await _reload(session, post_id)
        if fresh is None:
            raise NotFound("Post not found")
        if fresh.status == target_status and is_authorized(rule, actor, fresh.artist_id):
            logger.debug("Post %s already %s; treating repeat as success", post_id, target_status)
            return fresh

        logger.debug(
            "Post %s changed to %s during transition (attempt %d)", post_id, fresh.status, attempt
        )
        post = fresh

    logger.warning("Post %s transition to %s kept conflicting", post_id, target_status)
    raise Conflict("Post was modified concurrently")


async def delete_post(session: AsyncSession, actor: Actor, post_id: UUID) -> None:
    """Hard-delete a post in any status (staff only).

    History and comments go with it; stored media objects are left to the caller.
    """
    if not actor.is_staff:
        raise Forbidden("Only staff can delete posts")

    result = await session.execute(
        delete(Post).where(Post.id == post_id).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound("Post not found")
    logger.info("Post %s deleted by %s", post_id, actor.user_id)


async def list_calendar(
    session: AsyncSession,
    actor: Actor,
    year: int,
    month: int,
    artist_id: Optional[UUID] = None,
    platform: Optional[str] = None,
    status: Optional[str] = None,
) -> list[Post]:
    """Posts scheduled in the given month (UTC), optionally filtered.

    Artists only ever see their own posts.
    """
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12", reason="invalid_month")
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime(year + (month == 12), month % 12 + 1, 1, tzinfo=timezone.utc)

    query = select(Post).where(Post.scheduled_at >= start, Post.scheduled_at < end)
    if actor.is_artist:
        query = query.where(Post.artist_id == actor.artist_id)
    elif artist_id:
        query = query.where(Post.artist_id == artist_id)
    if platform:
        query = query.where(Post.platform == platform)
    if status:
        query = query.where(Post.status == status)

    result = await session.execute(query.order_by(Post.scheduled_at.asc()))
    return list(result.scalars().all())


async def pending_count(session: AsyncSession, actor: Actor) -> int:
    """Number of posts waiting for an artist's decision."""
    query = select(func.count()).select_from(Post).where(Post.status == "in_review")
    if actor.is_artist:
        query = query.where(Post.artist_id == actor.artist_id)
    return (await session.scalar(query)) or 0
