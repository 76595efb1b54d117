"""Tests for the artist roster and staff management of artist accounts."""

import uuid

import pytest
from sqlalchemy import select

from labelhub import artists
from labelhub.assistant import chat
from labelhub.errors import Conflict, Forbidden, NotFound, ValidationError
from labelhub.storage.models import AgentConfig, Artist, Post, User
from labelhub.validation import ArtistCreate, ArtistUpdate, parse
from tests.conftest import NOW, add_post


def _new_artist(**overrides):
    data = {
        "email": "Nuova@67ent.it",
        "display_name": "Giulia",
        "artist_name": "Giulia G",
        "color": "#FF5500",
        "instagram_handle": "giuliag",
    }
    data.update(overrides)
    return ArtistCreate(**data)


class TestRoster:
    @pytest.mark.asyncio
    async def test_assignable_excludes_label_and_inactive(self, session, roster):
        roster["artist_y"].is_active = False
        await session.commit()

        found = await artists.list_assignable_artists(session, roster["staff"])
        assert [a.name for a in found] == ["Artista X"]

    @pytest.mark.asyncio
    async def test_full_roster_reports_account_and_ai(self, session, roster, settings):
        await artists.create_artist(session, roster["staff"], _new_artist(), settings)
        await session.commit()

        entries = {e.artist.name: e for e in await artists.list_roster(session, roster["staff"])}
        assert set(entries) == {"Giulia G", "Artista X", "Artista Y", "67 Entertainment"}
        assert entries["Giulia G"].email == "nuova@67ent.it"
        assert entries["Giulia G"].ai_enabled is True
        assert entries["Artista X"].display_name == "X"
        assert entries["Artista X"].ai_enabled is False
        assert entries["67 Entertainment"].email is None

    @pytest.mark.asyncio
    async def test_artist_cannot_list(self, session, roster):
        with pytest.raises(Forbidden):
            await artists.list_roster(session, roster["x"])


class TestCreate:
    @pytest.mark.asyncio
    async def test_creates_account_roster_entry_and_enabled_agent(self, session, session_factory, roster, settings):
        entry = await artists.create_artist(session, roster["staff"], _new_artist(), settings)
        await session.commit()

        async with session_factory() as s:
            user = await s.scalar(select(User).where(User.email == "nuova@67ent.it"))
            artist = await s.get(Artist, entry.artist.id)
            config = await s.scalar(select(AgentConfig).where(AgentConfig.artist_id == artist.id))
        assert user.role == "artist"
        assert artist.user_id == user.id
        assert artist.color == "#FF5500"
        assert config.is_enabled is True
        assert config.daily_message_limit == settings.chat.default_daily_limit
        assert config.configured_by == roster["manager"].id

        usage = await chat.get_remaining_messages(session, artist.id, now=NOW, settings=settings)
        assert usage.is_enabled is True

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, session, roster, settings):
        await artists.create_artist(session, roster["staff"], _new_artist(), settings)
        await session.commit()
        with pytest.raises(Conflict):
            await artists.create_artist(session, roster["staff"], _new_artist(email="nuova@67ENT.it"), settings)

    @pytest.mark.parametrize("field,value", [
        ("email", "not-an-email"),
        ("color", "red"),
        ("artist_name", ""),
    ])
    def test_invalid_input(self, field, value):
        data = {"email": "a@b.it", "display_name": "A", "artist_name": "A", field: value}
        with pytest.raises(ValidationError) as exc_info:
            parse(ArtistCreate, data)
        assert field in exc_info.value.details["fields"]

    @pytest.mark.asyncio
    async def test_artist_cannot_create(self, session, roster, settings):
        with pytest.raises(Forbidden):
            await artists.create_artist(session, roster["x"], _new_artist(), settings)


class TestUpdate:
    @pytest.mark.asyncio
    async def test_partial_update_and_deactivation(self, session, roster):
        artist_id = roster["artist_x"].id
        updated = await artists.update_artist(
            session, roster["staff"], artist_id, ArtistUpdate(artist_name="X Nuovo", is_active=False, bio=None)
        )
        await session.commit()

        assert updated.name == "X Nuovo"
        assert updated.is_active is False
        assert updated.bio is None
        assert await artists.list_assignable_artists(session, roster["staff"]) == [roster["artist_y"]]

    @pytest.mark.parametrize("field", ["artist_name", "color", "is_active"])
    def test_required_fields_cannot_be_cleared(self, field):
        with pytest.raises(ValidationError):
            parse(ArtistUpdate, {field: None})

    @pytest.mark.asyncio
    async def test_unknown_artist(self, session, roster):
        with pytest.raises(NotFound):
            await artists.update_artist(session, roster["staff"], uuid.uuid4(), ArtistUpdate(color="#000000"))


class TestDelete:
    @pytest.mark.asyncio
    async def test_deactivates_and_removes_login(self, session, session_factory, roster):
        artist_id = roster["artist_x"].id
        user_id = roster["user_x"].id

        await artists.delete_artist(session, roster["staff"], artist_id)
        await session.commit()

        async with session_factory() as s:
            artist = await s.get(Artist, artist_id)
            assert artist.is_active is False
            assert artist.user_id is None
            assert await s.get(User, user_id) is None
            assert await artists.artist_for_user(s, user_id) is None

    @pytest.mark.asyncio
    async def test_author_of_posts_keeps_account(self, session, session_factory, roster):
        post = await add_post(session, roster["artist_x"], roster["user_x"])

        await artists.delete_artist(session, roster["staff"], roster["artist_x"].id)
        await session.commit()

        async with session_factory() as s:
            assert (await s.get(Artist, roster["artist_x"].id)).user_id is None
            assert await s.get(User, roster["user_x"].id) is not None
            assert (await s.get(Post, post.id)).artist_id == roster["artist_x"].id

    @pytest.mark.asyncio
    async def test_label_is_not_removable(self, session, roster):
        with pytest.raises(ValidationError) as exc_info:
            await artists.delete_artist(session, roster["staff"], roster["label"].id)
        assert exc_info.value.reason == "label_not_removable"

    @pytest.mark.asyncio
    async def test_artist_cannot_delete(self, session, roster):
        with pytest.raises(Forbidden):
            await artists.delete_artist(session, roster["x"], roster["artist_y"].id)
