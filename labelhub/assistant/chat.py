"""Artist AI assistant: gate, record and answer one chat message.

Conversation context is windowed per calendar day: every (artist, UTC date)
pair gets exactly one ChatSession, so a new day always starts fresh.

Quota accounting is reserve-then-confirm. A unit is taken atomically before
the completion call; it is handed back when the reservation overshoots the
limit or the provider fails, so only successful exchanges are ever charged.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from labelhub.assistant import quota
from labelhub.assistant.prompt import build_system_prompt
from labelhub.assistant.provider import Completion, CompletionProvider, get_provider
from labelhub.auth import Actor
from labelhub.config import Settings, get_settings
from labelhub.errors import AgentDisabled, Forbidden, NotFound, RateLimited, ServiceUnavailable
from labelhub.storage.models import AgentConfig, Artist, ChatMessage, ChatSession, utc_now
from labelhub.storage.upsert import insert_for
from labelhub.validation import clean_chat_message

logger = logging.getLogger(__name__)


@dataclass
class ChatUsage:
    daily_limit: int
    used_today: int
    remaining: int
    is_enabled: bool = True


@dataclass
class ChatReply:
    reply: str
    session_id: UUID
    usage: ChatUsage


def _check_access(actor: Optional[Actor], artist_id: UUID) -> None:
    if actor is not None and not (actor.is_staff or actor.owns(artist_id)):
        raise Forbidden("Not allowed to use this artist's assistant")


def _usage(daily_limit: int, used_today: int, is_enabled: bool = True) -> ChatUsage:
    return ChatUsage(
        daily_limit=daily_limit,
        used_today=used_today,
        remaining=max(daily_limit - used_today, 0),
        is_enabled=is_enabled,
    )


async def _session_for_day(
    session: AsyncSession, artist_id: UUID, user_id: Optional[UUID], day: date, now: datetime
) -> ChatSession:
    """Return the artist's session for ``day``, creating it if needed."""
    insert = insert_for(session, ChatSession)
    await session.execute(
        insert.values(
            artist_id=artist_id,
            user_id=user_id,
            context_date=day,
            title=f"Chat {day.isoformat()}",
            is_active=True,
            message_count=0,
            total_tokens=0,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=[ChatSession.artist_id, ChatSession.context_date])
    )
    chat_session = await session.scalar(
        select(ChatSession).where(ChatSession.artist_id == artist_id, ChatSession.context_date == day)
    )
    await session.commit()
    return chat_session


async def _recent_messages(session: AsyncSession, session_id: UUID, limit: int) -> list[ChatMessage]:
    """The last ``limit`` messages of a session, oldest first."""
    result = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.position.desc())
        .limit(limit)
    )
    return list(reversed(result.scalars().all()))


async def _release_reservation(session: AsyncSession, artist_id: UUID, day: date) -> None:
    await session.rollback()
    await quota.release(session, artist_id, day)


async def _complete(
    provider: CompletionProvider, messages: list[dict], config: AgentConfig, timeout: float
) -> Completion:
    try:
        return await asyncio.wait_for(
            provider.complete(
                messages,
                model=config.model,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        raise ServiceUnavailable(f"AI service timed out after {timeout:.0f}s") from e


async def send_message(
    session: AsyncSession,
    artist_id: UUID,
    raw_message: Optional[str],
    actor: Optional[Actor] = None,
    provider: Optional[CompletionProvider] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> ChatReply:
    """Validate, gate, and answer one message from an artist.

    Validation, disabled-agent and quota failures happen before anything is
    written. Any later failure, cancellation included, releases the
    reserved quota unit and persists no messages.
    """
    settings = settings or get_settings()
    now = now or utc_now()
    today = quota.utc_today(now)
    _check_access(actor, artist_id)

    message = clean_chat_message(raw_message, settings.chat.max_message_length)

    config = await session.scalar(select(AgentConfig).where(AgentConfig.artist_id == artist_id))
    if config is None or not config.is_enabled:
        raise AgentDisabled(f"AI agent disabled for artist {artist_id}")
    artist = await session.get(Artist, artist_id)
    if artist is None:
        raise NotFound("Artist not found")
    daily_limit = config.daily_message_limit

    used_before = await quota.read_usage(session, artist_id, today)
    if used_before >= daily_limit:
        logger.info("Artist %s hit daily limit (%d/%d)", artist_id, used_before, daily_limit)
        raise RateLimited(daily_limit, used_before, now)

    used_today = await quota.reserve(session, artist_id, today)
    if used_today > daily_limit:
        await quota.release(session, artist_id, today)
        logger.info("Artist %s lost quota race (%d/%d)", artist_id, used_today - 1, daily_limit)
        raise RateLimited(daily_limit, min(used_today - 1, daily_limit), now)

    # The unit stays charged only once the exchange is committed; any other
    # exit, cancellation included, hands it back.
    confirmed = False
    try:
        user_id = actor.user_id if actor else artist.user_id
        chat_session = await _session_for_day(session, artist_id, user_id, today, now)
        history = await _recent_messages(session, chat_session.id, settings.chat.context_messages)

        system_prompt = build_system_prompt(config, artist.name, settings.general.label_name)
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend({"role": m.role, "content": m.content} for m in history)
        messages.append({"role": "user", "content": message})

        provider = provider or get_provider(settings)
        completion = await _complete(provider, messages, config, settings.chat.timeout_seconds)

        tokens = completion.total_tokens or 0
        last_position = (
            await session.execute(
                update(ChatSession)
                .where(ChatSession.id == chat_session.id)
                .values(
                    message_count=ChatSession.message_count + 2,
                    total_tokens=ChatSession.total_tokens + tokens,
                    last_message_at=now,
                    updated_at=now,
                )
                .returning(ChatSession.message_count)
            )
        ).scalar_one()
        session.add_all([
            ChatMessage(
                session_id=chat_session.id,
                position=last_position - 1,
                role="user",
                content=message,
                created_at=now,
            ),
            ChatMessage(
                session_id=chat_session.id,
                position=last_position,
                role="assistant",
                content=completion.text,
                tokens_used=completion.total_tokens,
                model_used=completion.model,
                response_time_ms=completion.latency_ms,
                created_at=now,
            ),
        ])
        await quota.add_tokens(session, artist_id, today, tokens)
        await session.commit()
        confirmed = True
    finally:
        if not confirmed:
            await asyncio.shield(_release_reservation(session, artist_id, today))
            logger.warning("Chat exchange for artist %s did not complete; quota unit released", artist_id)

    logger.info(
        "Chat reply for artist %s (%d/%d today, %dms)",
        artist_id, used_today, daily_limit, completion.latency_ms,
    )
    return ChatReply(
        reply=completion.text,
        session_id=chat_session.id,
        usage=_usage(daily_limit, used_today),
    )


async def get_remaining_messages(
    session: AsyncSession,
    artist_id: UUID,
    actor: Optional[Actor] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> ChatUsage:
    """Today's usage snapshot; never fails because the agent is disabled."""
    settings = settings or get_settings()
    _check_access(actor, artist_id)
    config = await session.scalar(select(AgentConfig).where(AgentConfig.artist_id == artist_id))
    daily_limit = config.daily_message_limit if config else settings.chat.default_daily_limit
    is_enabled = bool(config and config.is_enabled)
    used = await quota.read_usage(session, artist_id, quota.utc_today(now))
    return _usage(daily_limit, used, is_enabled)


async def todays_messages(
    session: AsyncSession,
    actor: Actor,
    artist_id: UUID,
    now: Optional[datetime] = None,
) -> list[ChatMessage]:
    _check_access(actor, artist_id)
    chat_session = await session.scalar(
        select(ChatSession).where(
            ChatSession.artist_id == artist_id,
            ChatSession.context_date == quota.utc_today(now),
        )
    )
    if chat_session is None:
        return []
    return await session_messages(session, actor, chat_session.id)


async def list_sessions(session: AsyncSession, actor: Actor, artist_id: UUID, limit: int = 30) -> list[ChatSession]:
    """An artist's chat sessions, newest day first (staff only)."""
    if not actor.is_staff:
        raise Forbidden("Staff access required")
    result = await session.execute(
        select(ChatSession)
        .where(ChatSession.artist_id == artist_id)
        .order_by(ChatSession.context_date.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def session_messages(session: AsyncSession, actor: Actor, session_id: UUID) -> list[ChatMessage]:
    chat_session = await session.get(ChatSession, session_id)
    if chat_session is None:
        raise NotFound("Chat session not found")
    _check_access(actor, chat_session.artist_id)
    result = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.position.asc())
    )
    return list(result.scalars().all())
