"""Label toolkit: guideline sections and items with per-user read tracking.

Staff write the guidelines. Artists see the items addressed to everyone or
to them, minus expired campaigns; each user's read marks drive the unread
badge.
"""

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from labelhub.auth import Actor
from labelhub.errors import Conflict, Forbidden, NotFound, ValidationError
from labelhub.storage.models import (
    Artist,
    GuidelineItem,
    GuidelineRead,
    GuidelineSection,
    GuidelineTarget,
    as_utc,
    utc_now,
)
from labelhub.storage.upsert import insert_for
from labelhub.validation import GuidelineItemCreate, GuidelineItemUpdate, SectionCreate

logger = logging.getLogger(__name__)


@dataclass
class GuidelineEntry:
    """An item as seen by one user."""

    item: GuidelineItem
    section: GuidelineSection
    is_read: bool
    target_artist_ids: list[UUID] = field(default_factory=list)


def slugify(title: str) -> str:
    """``"Linee guida Social"`` -> ``"linee-guida-social"``; accents are folded to ASCII."""
    ascii_title = unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", ascii_title.lower()).strip("-")


def _require_staff(actor: Actor) -> None:
    if not actor.is_staff:
        raise Forbidden("Staff access required")


def _visible(query, actor: Actor, now: datetime):
    """Restrict an item query to what ``actor`` may read."""
    if actor.is_staff:
        return query
    targeted = select(GuidelineTarget.item_id).where(GuidelineTarget.artist_id == actor.artist_id)
    return query.where(
        or_(GuidelineItem.target_all.is_(True), GuidelineItem.id.in_(targeted)),
        or_(GuidelineItem.valid_until.is_(None), GuidelineItem.valid_until >= now),
    )


def _unread(query, actor: Actor):
    read = select(GuidelineRead.item_id).where(GuidelineRead.user_id == actor.user_id)
    return query.where(GuidelineItem.id.not_in(read))


async def _targets(session: AsyncSession, item_ids: list[UUID]) -> dict[UUID, list[UUID]]:
    if not item_ids:
        return {}
    result = await session.execute(
        select(GuidelineTarget.item_id, GuidelineTarget.artist_id).where(GuidelineTarget.item_id.in_(item_ids))
    )
    targets: dict[UUID, list[UUID]] = {}
    for item_id, artist_id in result.all():
        targets.setdefault(item_id, []).append(artist_id)
    return targets


async def _set_targets(session: AsyncSession, item_id: UUID, artist_ids: list[UUID]) -> None:
    artist_ids = list(dict.fromkeys(artist_ids))
    if artist_ids:
        found = await session.scalar(
            select(func.count()).select_from(Artist).where(Artist.id.in_(artist_ids))
        )
        if found != len(artist_ids):
            raise ValidationError("Unknown artist in targets", reason="invalid_artist")
    await session.execute(delete(GuidelineTarget).where(GuidelineTarget.item_id == item_id))
    session.add_all(GuidelineTarget(item_id=item_id, artist_id=a) for a in artist_ids)
    await session.flush()


async def _entry(session: AsyncSession, actor: Actor, item_id: UUID) -> GuidelineEntry:
    row = (
        await session.execute(
            select(GuidelineItem, GuidelineSection, GuidelineRead.read_at)
            .join(GuidelineSection, GuidelineSection.id == GuidelineItem.section_id)
            .outerjoin(
                GuidelineRead,
                and_(GuidelineRead.item_id == GuidelineItem.id, GuidelineRead.user_id == actor.user_id),
            )
            .where(GuidelineItem.id == item_id)
            .execution_options(populate_existing=True)
        )
    ).one()
    item, section, read_at = row
    targets = await _targets(session, [item.id])
    return GuidelineEntry(item, section, read_at is not None, targets.get(item.id, []))


# --- Sections ---

async def list_sections(session: AsyncSession) -> list[GuidelineSection]:
    result = await session.execute(
        select(GuidelineSection).order_by(GuidelineSection.sort_order.asc(), GuidelineSection.title.asc())
    )
    return list(result.scalars().all())


async def get_section(session: AsyncSession, section_id: UUID) -> GuidelineSection:
    section = await session.get(GuidelineSection, section_id)
    if section is None:
        raise NotFound("Guideline section not found")
    return section


async def create_section(session: AsyncSession, actor: Actor, data: SectionCreate) -> GuidelineSection:
    """Create a section; the slug is derived from the title unless given (staff only)."""
    _require_staff(actor)
    slug = data.slug or slugify(data.title)
    if not slug:
        raise ValidationError("Title must contain letters or digits", reason="invalid_slug")
    if await session.scalar(select(GuidelineSection.id).where(GuidelineSection.slug == slug)):
        raise Conflict(f"Section slug {slug!r} already exists", details={"slug": slug})

    section = GuidelineSection(
        title=data.title,
        slug=slug,
        description=data.description or None,
        icon=data.icon,
        sort_order=data.sort_order,
        created_by=actor.user_id,
    )
    session.add(section)
    await session.flush()
    logger.info("Guideline section %s created by %s", slug, actor.user_id)
    return section


# --- Items ---

async def list_items(
    session: AsyncSession,
    actor: Actor,
    section_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> list[GuidelineEntry]:
    """Items visible to ``actor``, highest priority then newest first."""
    now = as_utc(now or utc_now())
    query = (
        select(GuidelineItem, GuidelineSection, GuidelineRead.read_at)
        .join(GuidelineSection, GuidelineSection.id == GuidelineItem.section_id)
        .outerjoin(
            GuidelineRead,
            and_(GuidelineRead.item_id == GuidelineItem.id, GuidelineRead.user_id == actor.user_id),
        )
    )
    if section_id:
        query = query.where(GuidelineItem.section_id == section_id)
    query = _visible(query, actor, now).order_by(GuidelineItem.priority.desc(), GuidelineItem.created_at.desc())

    rows = (await session.execute(query)).all()
    targets = await _targets(session, [item.id for item, _, _ in rows])
    return [
        GuidelineEntry(item, section, read_at is not None, targets.get(item.id, []))
        for item, section, read_at in rows
    ]


async def create_item(
    session: AsyncSession,
    actor: Actor,
    data: GuidelineItemCreate,
    now: Optional[datetime] = None,
) -> GuidelineEntry:
    _require_staff(actor)
    now = now or utc_now()
    await get_section(session, data.section_id)

    item = GuidelineItem(
        section_id=data.section_id,
        title=data.title,
        content=data.content,
        item_type=data.item_type,
        priority=data.priority,
        valid_from=as_utc(data.valid_from) if data.valid_from else None,
        valid_until=as_utc(data.valid_until) if data.valid_until else None,
        target_all=data.target_all,
        attachment_url=data.attachment_url or None,
        attachment_name=data.attachment_name or None,
        created_by=actor.user_id,
        created_at=now,
        updated_at=now,
    )
    session.add(item)
    await session.flush()
    if not data.target_all:
        await _set_targets(session, item.id, data.target_artist_ids)

    logger.info("Guideline item %s created in section %s", item.id, data.section_id)
    return await _entry(session, actor, item.id)


async def update_item(
    session: AsyncSession,
    actor: Actor,
    item_id: UUID,
    data: GuidelineItemUpdate,
    now: Optional[datetime] = None,
) -> GuidelineEntry:
    """Partial edit; validity window and targeting are re-checked on the merged item."""
    _require_staff(actor)
    item = await session.get(GuidelineItem, item_id)
    if item is None:
        raise NotFound("Guideline item not found")

    values = data.model_dump(exclude_unset=True)
    target_ids = values.pop("target_artist_ids", None)
    for name in ("valid_from", "valid_until"):
        if values.get(name) is not None:
            values[name] = as_utc(values[name])
    for name, value in values.items():
        setattr(item, name, value)

    if item.valid_from and item.valid_until and as_utc(item.valid_from) >= as_utc(item.valid_until):
        raise ValidationError("valid_from must be before valid_until", reason="invalid_window")

    if item.target_all:
        await _set_targets(session, item.id, [])
    elif target_ids is not None:
        if not target_ids:
            raise ValidationError("Select at least one artist", reason="targets_required")
        await _set_targets(session, item.id, target_ids)
    elif not (await _targets(session, [item.id])):
        raise ValidationError("Select at least one artist", reason="targets_required")

    item.updated_at = now or utc_now()
    await session.flush()
    return await _entry(session, actor, item.id)


async def delete_item(session: AsyncSession, actor: Actor, item_id: UUID) -> None:
    _require_staff(actor)
    result = await session.execute(
        delete(GuidelineItem).where(GuidelineItem.id == item_id).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound("Guideline item not found")
    logger.info("Guideline item %s deleted by %s", item_id, actor.user_id)


# --- Read tracking ---

async def _mark(session: AsyncSession, actor: Actor, item_ids: list[UUID], now: datetime) -> None:
    if not item_ids:
        return
    insert = insert_for(session, GuidelineRead)
    await session.execute(
        insert.values([{"item_id": i, "user_id": actor.user_id, "read_at": now} for i in item_ids])
        .on_conflict_do_nothing(index_elements=[GuidelineRead.item_id, GuidelineRead.user_id])
    )


async def mark_read(
    session: AsyncSession, actor: Actor, item_id: UUID, now: Optional[datetime] = None
) -> None:
    """Mark one item read for ``actor``; repeating it is a no-op."""
    now = as_utc(now or utc_now())
    visible = await session.scalar(_visible(select(GuidelineItem.id).where(GuidelineItem.id == item_id), actor, now))
    if visible is None:
        raise NotFound("Guideline item not found")
    await _mark(session, actor, [item_id], now)


async def mark_section_read(
    session: AsyncSession, actor: Actor, section_id: UUID, now: Optional[datetime] = None
) -> int:
    """Mark every visible unread item of a section read. Returns how many were marked."""
    now = as_utc(now or utc_now())
    await get_section(session, section_id)
    query = select(GuidelineItem.id).where(GuidelineItem.section_id == section_id)
    item_ids = list((await session.execute(_unread(_visible(query, actor, now), actor))).scalars().all())
    await _mark(session, actor, item_ids, now)
    return len(item_ids)


async def unread_count(
    session: AsyncSession,
    actor: Actor,
    section_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> int:
    now = as_utc(now or utc_now())
    query = select(func.count()).select_from(GuidelineItem)
    if section_id:
        query = query.where(GuidelineItem.section_id == section_id)
    return (await session.scalar(_unread(_visible(query, actor, now), actor))) or 0
