"""Staff management of per-artist AI agent configurations."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from labelhub.assistant.quota import utc_today
from labelhub.auth import Actor
from labelhub.config import Settings, get_settings
from labelhub.errors import Forbidden, NotFound
from labelhub.storage.models import AgentConfig, Artist, ChatSession, DailyUsage, utc_now
from labelhub.validation import AgentConfigUpdate

logger = logging.getLogger(__name__)


@dataclass
class ArtistUsage:
    artist_id: UUID
    artist_name: str
    is_enabled: bool
    daily_limit: int
    used_today: int
    used_7d: int
    used_30d: int
    tokens_30d: int
    sessions: int


def _require_staff(actor: Actor) -> None:
    if not actor.is_staff:
        raise Forbidden("Staff access required")


def default_config(artist_id: UUID, settings: Settings) -> AgentConfig:
    return AgentConfig(
        artist_id=artist_id,
        is_enabled=False,
        model=settings.deepseek.model,
        temperature=settings.chat.default_temperature,
        max_tokens=settings.chat.default_max_tokens,
        daily_message_limit=settings.chat.default_daily_limit,
    )


async def _load(session: AsyncSession, artist_id: UUID) -> Optional[AgentConfig]:
    return await session.scalar(select(AgentConfig).where(AgentConfig.artist_id == artist_id))


async def _ensure_config(session: AsyncSession, artist_id: UUID, settings: Settings) -> AgentConfig:
    if await session.get(Artist, artist_id) is None:
        raise NotFound("Artist not found")
    config = await _load(session, artist_id)
    if config is None:
        config = default_config(artist_id, settings)
        session.add(config)
        await session.flush()
    return config


async def get_config(
    session: AsyncSession, actor: Actor, artist_id: UUID, settings: Optional[Settings] = None
) -> AgentConfig:
    """The artist's config, or an unsaved default one when none exists yet."""
    _require_staff(actor)
    if await session.get(Artist, artist_id) is None:
        raise NotFound("Artist not found")
    return await _load(session, artist_id) or default_config(artist_id, settings or get_settings())


async def update_config(
    session: AsyncSession,
    actor: Actor,
    artist_id: UUID,
    data: AgentConfigUpdate,
    settings: Optional[Settings] = None,
) -> AgentConfig:
    _require_staff(actor)
    config = await _ensure_config(session, artist_id, settings or get_settings())
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(config, field, value)
    config.configured_by = actor.user_id
    config.updated_at = utc_now()
    await session.flush()
    logger.info("AI agent config for artist %s updated by %s", artist_id, actor.user_id)
    return config


async def toggle_ai(
    session: AsyncSession,
    actor: Actor,
    artist_id: UUID,
    enabled: bool,
    settings: Optional[Settings] = None,
) -> AgentConfig:
    """Enable or disable an artist's assistant, creating a default config if needed."""
    _require_staff(actor)
    config = await _ensure_config(session, artist_id, settings or get_settings())
    config.is_enabled = enabled
    config.configured_by = actor.user_id
    config.updated_at = utc_now()
    await session.flush()
    logger.info("AI agent for artist %s %s", artist_id, "enabled" if enabled else "disabled")
    return config


async def usage_stats(
    session: AsyncSession,
    actor: Actor,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> list[ArtistUsage]:
    """Per-artist assistant usage for today, the last 7 and the last 30 days."""
    _require_staff(actor)
    settings = settings or get_settings()
    today = utc_today(now)
    week_start = today - timedelta(days=6)
    month_start = today - timedelta(days=29)

    artists = (
        await session.execute(
            select(Artist).where(Artist.is_label.is_(False)).order_by(Artist.name.asc())
        )
    ).scalars().all()
    configs = {
        c.artist_id: c for c in (await session.execute(select(AgentConfig))).scalars().all()
    }

    usage_rows = (
        await session.execute(
            select(DailyUsage.artist_id, DailyUsage.usage_date, DailyUsage.messages_used, DailyUsage.tokens_used)
            .where(DailyUsage.usage_date >= month_start, DailyUsage.usage_date <= today)
        )
    ).all()
    session_counts = dict(
        (
            await session.execute(
                select(ChatSession.artist_id, func.count()).group_by(ChatSession.artist_id)
            )
        ).all()
    )

    stats = []
    for artist in artists:
        config = configs.get(artist.id)
        rows = [r for r in usage_rows if r.artist_id == artist.id]
        stats.append(ArtistUsage(
            artist_id=artist.id,
            artist_name=artist.name,
            is_enabled=bool(config and config.is_enabled),
            daily_limit=config.daily_message_limit if config else settings.chat.default_daily_limit,
            used_today=sum(r.messages_used for r in rows if r.usage_date == today),
            used_7d=sum(r.messages_used for r in rows if r.usage_date >= week_start),
            used_30d=sum(r.messages_used for r in rows),
            tokens_30d=sum(r.tokens_used for r in rows),
            sessions=session_counts.get(artist.id, 0),
        ))
    return stats
