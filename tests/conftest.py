"""Shared test fixtures."""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from labelhub.assistant.provider import Completion
from labelhub.auth import Actor
from labelhub.config import Settings
from labelhub.errors import ServiceUnavailable
from labelhub.storage.db import close_db, configure, get_session_factory, init_db
from labelhub.storage.models import AgentConfig, Artist, Post, User

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


def make_agent_config(**overrides):
    """Create a mock AgentConfig object for testing."""
    defaults = {
        "id": uuid.uuid4(),
        "artist_id": uuid.uuid4(),
        "is_enabled": True,
        "model": "deepseek-chat",
        "temperature": 0.7,
        "max_tokens": 1000,
        "daily_message_limit": 20,
        "prompt_identity": None,
        "prompt_activity": None,
        "prompt_ontology": None,
        "prompt_marketing": None,
        "prompt_boundaries": None,
        "prompt_extra": None,
    }
    defaults.update(overrides)
    mock = MagicMock()
    for k, v in defaults.items():
        setattr(mock, k, v)
    return mock


class FakeProvider:
    """Completion provider that records calls and answers from a script."""

    def __init__(self, reply="Ecco un'idea per il tuo prossimo reel!", fail=False, total_tokens=42):
        self.reply = reply
        self.fail = fail
        self.total_tokens = total_tokens
        self.calls = []

    async def complete(self, messages, *, model, temperature, max_tokens):
        self.calls.append({
            "messages": messages,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.fail:
            raise ServiceUnavailable("provider down")
        return Completion(text=self.reply, model=model, total_tokens=self.total_tokens, latency_ms=5)


@pytest.fixture
def settings():
    return Settings()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """A fresh file-backed SQLite database per test."""
    configure(f"sqlite+aiosqlite:///{tmp_path / 'labelhub.db'}")
    await init_db()
    yield get_session_factory()
    await close_db()


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


async def add_user(session, role="manager", **overrides) -> User:
    user_id = overrides.pop("id", uuid.uuid4())
    defaults = {
        "id": user_id,
        "email": f"{role}-{user_id.hex[:8]}@67ent.it",
        "display_name": f"Test {role}",
        "role": role,
    }
    defaults.update(overrides)
    user = User(**defaults)
    session.add(user)
    await session.commit()
    return user


async def add_artist(session, user=None, **overrides) -> Artist:
    defaults = {
        "user_id": user.id if user else None,
        "name": "Test Artist",
        "is_active": True,
        "is_label": False,
    }
    defaults.update(overrides)
    artist = Artist(**defaults)
    session.add(artist)
    await session.commit()
    return artist


async def add_post(session, artist, creator, **overrides) -> Post:
    defaults = {
        "title": "Nuovo singolo",
        "caption": "Fuori venerdì",
        "platform": "instagram_feed",
        "status": "draft",
        "artist_id": artist.id,
        "created_by": creator.id,
        "scheduled_at": NOW + timedelta(days=7),
    }
    defaults.update(overrides)
    post = Post(**defaults)
    session.add(post)
    await session.commit()
    return post


async def add_agent_config(session, artist, **overrides) -> AgentConfig:
    defaults = {
        "artist_id": artist.id,
        "is_enabled": True,
        "model": "deepseek-chat",
        "temperature": 0.7,
        "max_tokens": 1000,
        "daily_message_limit": 20,
    }
    defaults.update(overrides)
    config = AgentConfig(**defaults)
    session.add(config)
    await session.commit()
    return config


def staff_actor(user) -> Actor:
    return Actor(user_id=user.id, role=user.role)


def artist_actor(user, artist) -> Actor:
    return Actor(user_id=user.id, role="artist", artist_id=artist.id)


@pytest_asyncio.fixture
async def roster(session):
    """A manager, two artists with accounts, and the label pseudo-artist."""
    manager = await add_user(session, "manager")
    user_x = await add_user(session, "artist", display_name="X")
    user_y = await add_user(session, "artist", display_name="Y")
    artist_x = await add_artist(session, user_x, name="Artista X")
    artist_y = await add_artist(session, user_y, name="Artista Y")
    label = await add_artist(session, None, name="67 Entertainment", is_label=True)
    return {
        "manager": manager,
        "user_x": user_x,
        "user_y": user_y,
        "artist_x": artist_x,
        "artist_y": artist_y,
        "label": label,
        "staff": staff_actor(manager),
        "x": artist_actor(user_x, artist_x),
        "y": artist_actor(user_y, artist_y),
    }
