"""Artist roster queries and staff management of artist accounts."""

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from labelhub.assistant.agents import default_config
from labelhub.auth import Actor
from labelhub.config import Settings, get_settings
from labelhub.errors import Conflict, Forbidden, NotFound, ValidationError
from labelhub.storage.models import AgentConfig, Artist, Post, User, utc_now
from labelhub.validation import ArtistCreate, ArtistUpdate

logger = logging.getLogger(__name__)


@dataclass
class RosterEntry:
    """An artist with its login account and assistant status, as staff manage it."""

    artist: Artist
    email: Optional[str]
    display_name: Optional[str]
    ai_enabled: bool


def _require_staff(actor: Actor) -> None:
    if not actor.is_staff:
        raise Forbidden("Staff access required")


async def list_assignable_artists(session: AsyncSession, actor: Actor) -> list[Artist]:
    """Active roster artists, excluding the label pseudo-artist (staff only)."""
    _require_staff(actor)
    result = await session.execute(
        select(Artist)
        .where(Artist.is_label.is_(False), Artist.is_active.is_(True))
        .order_by(Artist.name.asc())
    )
    return list(result.scalars().all())


async def artist_for_user(session: AsyncSession, user_id: UUID) -> Optional[Artist]:
    """The roster entry linked to a user account, if any."""
    return await session.scalar(select(Artist).where(Artist.user_id == user_id))


async def list_roster(session: AsyncSession, actor: Actor) -> list[RosterEntry]:
    """Every artist, active or not, newest first, with account and AI status (staff only)."""
    _require_staff(actor)
    result = await session.execute(
        select(Artist, User.email, User.display_name, AgentConfig.is_enabled)
        .outerjoin(User, User.id == Artist.user_id)
        .outerjoin(AgentConfig, AgentConfig.artist_id == Artist.id)
        .order_by(Artist.created_at.desc())
    )
    return [
        RosterEntry(artist=artist, email=email, display_name=name, ai_enabled=bool(enabled))
        for artist, email, name, enabled in result.all()
    ]


async def create_artist(
    session: AsyncSession,
    actor: Actor,
    data: ArtistCreate,
    settings: Optional[Settings] = None,
) -> RosterEntry:
    """Create the artist's account, roster entry and an enabled assistant config.

    Credentials are issued by the identity provider; only the profile lives here.
    """
    _require_staff(actor)
    settings = settings or get_settings()
    email = data.email.lower()
    if await session.scalar(select(User.id).where(func.lower(User.email) == email)):
        raise Conflict("Email already registered", details={"email": email})

    user = User(email=email, display_name=data.display_name, role="artist")
    session.add(user)
    await session.flush()

    artist = Artist(
        user_id=user.id,
        name=data.artist_name,
        color=data.color,
        bio=data.bio or None,
        instagram_handle=data.instagram_handle or None,
        tiktok_handle=data.tiktok_handle or None,
        youtube_handle=data.youtube_handle or None,
        spotify_url=data.spotify_url or None,
        is_active=True,
        is_label=False,
    )
    session.add(artist)
    await session.flush()

    config = default_config(artist.id, settings)
    config.is_enabled = True
    config.configured_by = actor.user_id
    session.add(config)
    await session.flush()

    logger.info("Artist %s (%s) created by %s", artist.name, email, actor.user_id)
    return RosterEntry(artist=artist, email=user.email, display_name=user.display_name, ai_enabled=True)


async def update_artist(session: AsyncSession, actor: Actor, artist_id: UUID, data: ArtistUpdate) -> Artist:
    _require_staff(actor)
    artist = await session.get(Artist, artist_id)
    if artist is None:
        raise NotFound("Artist not found")

    values = data.model_dump(exclude_unset=True)
    if "artist_name" in values:
        values["name"] = values.pop("artist_name")
    for name, value in values.items():
        setattr(artist, name, value)
    artist.updated_at = utc_now()
    await session.flush()
    logger.info("Artist %s updated by %s (%s)", artist_id, actor.user_id, ", ".join(sorted(values)))
    return artist


async def delete_artist(session: AsyncSession, actor: Actor, artist_id: UUID) -> None:
    """Deactivate the artist and remove its login account.

    The roster row stays so existing posts keep their artist. An account that
    authored posts is unlinked but kept, since posts reference their author.
    """
    _require_staff(actor)
    artist = await session.get(Artist, artist_id)
    if artist is None:
        raise NotFound("Artist not found")
    if artist.is_label:
        raise ValidationError("The label cannot be removed", reason="label_not_removable")

    user_id = artist.user_id
    artist.is_active = False
    artist.user_id = None
    artist.updated_at = utc_now()
    await session.flush()
    authored = user_id is not None and await session.scalar(
        select(func.count()).select_from(Post).where(Post.created_by == user_id)
    )
    if user_id is not None and not authored:
        await session.execute(
            delete(User).where(User.id == user_id).execution_options(synchronize_session=False)
        )
    logger.info("Artist %s removed by %s", artist_id, actor.user_id)
