"""Post activity: audit history, comments, and user notifications."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from labelhub.auth import Actor
from labelhub.errors import Forbidden, NotFound
from labelhub.storage.models import Artist, Notification, Post, PostComment, PostHistory
from labelhub.validation import CommentCreate

logger = logging.getLogger(__name__)

NOTIFICATION_LIMIT = 50


async def record_history(
    session: AsyncSession,
    post_id: UUID,
    user_id: UUID,
    action: str,
    details: Optional[dict] = None,
) -> PostHistory:
    entry = PostHistory(post_id=post_id, user_id=user_id, action=action, details=details or {})
    session.add(entry)
    await session.flush()
    return entry


async def list_history(session: AsyncSession, post_id: UUID) -> list[PostHistory]:
    result = await session.execute(
        select(PostHistory)
        .where(PostHistory.post_id == post_id)
        .order_by(PostHistory.created_at.asc())
    )
    return list(result.scalars().all())


async def notify(
    session: AsyncSession,
    user_id: Optional[UUID],
    type_: str,
    title: str,
    body: str = "",
    data: Optional[dict] = None,
) -> Optional[Notification]:
    """Queue a notification for ``user_id``; artists without an account are skipped."""
    if user_id is None:
        return None
    notification = Notification(user_id=user_id, type=type_, title=title, body=body, data=data or {})
    session.add(notification)
    await session.flush()
    return notification


async def notify_transition(session: AsyncSession, post: Post, to_status: str) -> Optional[Notification]:
    """Tell the counterpart of a transition what happened to the post."""
    data = {"post_id": str(post.id), "status": to_status}

    if to_status in ("in_review", "published"):
        artist_user = await session.scalar(select(Artist.user_id).where(Artist.id == post.artist_id))
        if to_status == "in_review":
            return await notify(session, artist_user, "post_review", "Nuovo post da approvare", post.title, data)
        return await notify(session, artist_user, "post_published", "Post pubblicato", post.title, data)

    if to_status == "approved":
        return await notify(session, post.created_by, "post_approved", "Post approvato", post.title, data)
    if to_status == "rejected":
        data["reason"] = post.rejection_reason
        return await notify(
            session, post.created_by, "post_rejected", "Post rifiutato", post.rejection_reason or "", data
        )
    return None


async def list_notifications(session: AsyncSession, actor: Actor) -> list[Notification]:
    result = await session.execute(
        select(Notification)
        .where(Notification.user_id == actor.user_id)
        .order_by(Notification.created_at.desc())
        .limit(NOTIFICATION_LIMIT)
    )
    return list(result.scalars().all())


async def unread_count(session: AsyncSession, actor: Actor) -> int:
    count = await session.scalar(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == actor.user_id, Notification.read.is_(False))
    )
    return count or 0


async def mark_read(session: AsyncSession, actor: Actor, notification_id: UUID) -> Notification:
    notification = await session.get(Notification, notification_id)
    if notification is None or notification.user_id != actor.user_id:
        raise NotFound("Notification not found")
    notification.read = True
    await session.flush()
    return notification


async def mark_all_read(session: AsyncSession, actor: Actor) -> int:
    result = await session.execute(
        update(Notification)
        .where(Notification.user_id == actor.user_id, Notification.read.is_(False))
        .values(read=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def _post_visible_to(session: AsyncSession, actor: Actor, post_id: UUID) -> Post:
    post = await session.get(Post, post_id)
    if post is None:
        raise NotFound("Post not found")
    if not (actor.is_staff or actor.owns(post.artist_id)):
        raise Forbidden("Not allowed to access this post")
    return post


async def add_comment(session: AsyncSession, actor: Actor, post_id: UUID, data: CommentCreate) -> PostComment:
    await _post_visible_to(session, actor, post_id)
    comment = PostComment(post_id=post_id, user_id=actor.user_id, content=data.content)
    session.add(comment)
    await session.flush()
    logger.debug("Comment added to post %s by %s", post_id, actor.user_id)
    return comment


async def list_comments(session: AsyncSession, actor: Actor, post_id: UUID) -> list[PostComment]:
    await _post_visible_to(session, actor, post_id)
    result = await session.execute(
        select(PostComment)
        .where(PostComment.post_id == post_id)
        .order_by(PostComment.created_at.asc())
    )
    return list(result.scalars().all())
