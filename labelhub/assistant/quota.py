"""Per-artist daily message quota.

The counter lives in ``ai_daily_usage`` keyed by (artist, UTC date). A unit
is *reserved* with a single atomic upsert before the completion call and
either kept (successful exchange) or *released* (over the limit, or the
provider failed). Each write commits immediately so the row lock is held
only for the duration of one statement.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from labelhub.storage.models import DailyUsage, utc_now
from labelhub.storage.upsert import insert_for

logger = logging.getLogger(__name__)


def utc_today(now: Optional[datetime] = None) -> date:
    now = now or utc_now()
    if now.tzinfo is None:
        return now.date()
    return now.astimezone(timezone.utc).date()


async def read_usage(session: AsyncSession, artist_id: UUID, day: date) -> int:
    """Messages consumed by ``artist_id`` on ``day`` (0 when no row exists)."""
    used = await session.scalar(
        select(DailyUsage.messages_used).where(
            DailyUsage.artist_id == artist_id, DailyUsage.usage_date == day
        )
    )
    return used or 0


async def reserve(session: AsyncSession, artist_id: UUID, day: date) -> int:
    """Atomically add one unit and return the post-increment count."""
    insert = insert_for(session, DailyUsage)
    stmt = (
        insert.values(artist_id=artist_id, usage_date=day, messages_used=1, tokens_used=0, updated_at=utc_now())
        .on_conflict_do_update(
            index_elements=[DailyUsage.artist_id, DailyUsage.usage_date],
            set_={
                "messages_used": DailyUsage.messages_used + 1,
                "updated_at": utc_now(),
            },
        )
        .returning(DailyUsage.messages_used)
    )
    used = (await session.execute(stmt)).scalar_one()
    await session.commit()
    return used


async def release(session: AsyncSession, artist_id: UUID, day: date) -> None:
    """Give back a reserved unit."""
    await session.execute(
        update(DailyUsage)
        .where(
            DailyUsage.artist_id == artist_id,
            DailyUsage.usage_date == day,
            DailyUsage.messages_used > 0,
        )
        .values(messages_used=DailyUsage.messages_used - 1, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    logger.info("Released quota unit for artist %s on %s", artist_id, day)


async def add_tokens(session: AsyncSession, artist_id: UUID, day: date, tokens: int) -> None:
    """Accumulate provider-reported tokens on the day's row (no commit)."""
    if not tokens:
        return
    await session.execute(
        update(DailyUsage)
        .where(DailyUsage.artist_id == artist_id, DailyUsage.usage_date == day)
        .values(tokens_used=DailyUsage.tokens_used + tokens, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
