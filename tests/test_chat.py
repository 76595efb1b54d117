"""Tests for the artist AI assistant: gating, quota accounting and session windowing."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from labelhub.assistant import chat
from labelhub.assistant.quota import read_usage, utc_today
from labelhub.errors import AgentDisabled, Forbidden, RateLimited, ServiceUnavailable, ValidationError
from labelhub.storage.models import ChatMessage, ChatSession, DailyUsage
from tests.conftest import NOW, FakeProvider, add_agent_config


async def _count(session_factory, model):
    async with session_factory() as s:
        return await s.scalar(select(func.count()).select_from(model))


async def _used(session_factory, artist_id, now=NOW):
    async with session_factory() as s:
        return await read_usage(s, artist_id, utc_today(now))


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_successful_exchange(self, session, session_factory, roster, settings):
        artist = roster["artist_x"]
        await add_agent_config(session, artist, daily_message_limit=3, prompt_identity="Sei l'AI di X.")
        provider = FakeProvider(reply="Prova un carosello.")

        result = await chat.send_message(
            session, artist.id, "  Idee per il lancio?  ", actor=roster["x"],
            provider=provider, now=NOW, settings=settings,
        )

        assert result.reply == "Prova un carosello."
        assert result.usage.daily_limit == 3
        assert result.usage.used_today == 1
        assert result.usage.remaining == 2

        sent = provider.calls[0]
        assert sent["messages"][0] == {"role": "system", "content": "Sei l'AI di X."}
        assert sent["messages"][-1] == {"role": "user", "content": "Idee per il lancio?"}
        assert sent["model"] == "deepseek-chat"

        async with session_factory() as s:
            messages = await chat.session_messages(s, roster["staff"], result.session_id)
            stored_session = await s.get(ChatSession, result.session_id)
            usage = await s.get(DailyUsage, (artist.id, utc_today(NOW)))
        assert [(m.position, m.role) for m in messages] == [(1, "user"), (2, "assistant")]
        assert messages[1].tokens_used == 42
        assert stored_session.message_count == 2
        assert stored_session.total_tokens == 42
        assert usage.messages_used == 1
        assert usage.tokens_used == 42

    @pytest.mark.asyncio
    async def test_history_is_sent_in_order(self, session, roster, settings):
        artist = roster["artist_x"]
        await add_agent_config(session, artist)
        provider = FakeProvider()

        for text in ("primo", "secondo", "terzo"):
            await chat.send_message(session, artist.id, text, provider=provider, now=NOW, settings=settings)

        last_call = provider.calls[-1]["messages"]
        assert [m["role"] for m in last_call] == ["system", "user", "assistant", "user", "assistant", "user"]
        assert [m["content"] for m in last_call if m["role"] == "user"] == ["primo", "secondo", "terzo"]

    @pytest.mark.asyncio
    async def test_context_window_is_bounded(self, session, roster, settings):
        artist = roster["artist_x"]
        await add_agent_config(session, artist, daily_message_limit=100)
        settings.chat.context_messages = 4
        provider = FakeProvider()

        for i in range(4):
            await chat.send_message(session, artist.id, f"msg {i}", provider=provider, now=NOW, settings=settings)

        last_call = provider.calls[-1]["messages"]
        # system + 4 most recent history messages + new user message
        assert len(last_call) == 6
        assert last_call[1]["content"] == "msg 1"

    @pytest.mark.asyncio
    async def test_fallback_prompt_when_fragments_empty(self, session, roster, settings):
        artist = roster["artist_x"]
        await add_agent_config(session, artist)
        provider = FakeProvider()

        await chat.send_message(session, artist.id, "ciao", provider=provider, now=NOW, settings=settings)

        system = provider.calls[0]["messages"][0]["content"]
        assert system.startswith("Sei l'assistente AI personale di Artista X")


class TestGating:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw,reason", [("", "message_empty"), ("   ", "message_empty"), ("x" * 2001, "message_too_long")])
    async def test_invalid_message(self, session, session_factory, roster, settings, raw, reason):
        artist = roster["artist_x"]
        await add_agent_config(session, artist)
        provider = FakeProvider()

        with pytest.raises(ValidationError) as exc_info:
            await chat.send_message(session, artist.id, raw, provider=provider, now=NOW, settings=settings)

        assert exc_info.value.reason == reason
        assert provider.calls == []
        assert await _count(session_factory, ChatSession) == 0

    @pytest.mark.asyncio
    async def test_exactly_max_length_is_accepted(self, session, roster, settings):
        artist = roster["artist_x"]
        await add_agent_config(session, artist)
        result = await chat.send_message(
            session, artist.id, "x" * 2000, provider=FakeProvider(), now=NOW, settings=settings
        )
        assert result.usage.used_today == 1

    @pytest.mark.asyncio
    async def test_missing_config_is_disabled(self, session, session_factory, roster, settings):
        with pytest.raises(AgentDisabled):
            await chat.send_message(
                session, roster["artist_x"].id, "ciao", provider=FakeProvider(), now=NOW, settings=settings
            )
        assert await _count(session_factory, ChatSession) == 0
        assert await _count(session_factory, DailyUsage) == 0

    @pytest.mark.asyncio
    async def test_disabled_config(self, session, roster, settings):
        await add_agent_config(session, roster["artist_x"], is_enabled=False)
        with pytest.raises(AgentDisabled):
            await chat.send_message(
                session, roster["artist_x"].id, "ciao", provider=FakeProvider(), now=NOW, settings=settings
            )

    @pytest.mark.asyncio
    async def test_other_artist_is_forbidden(self, session, roster, settings):
        await add_agent_config(session, roster["artist_x"])
        with pytest.raises(Forbidden):
            await chat.send_message(
                session, roster["artist_x"].id, "ciao", actor=roster["y"],
                provider=FakeProvider(), now=NOW, settings=settings,
            )

    @pytest.mark.asyncio
    async def test_rate_limited_reports_reset(self, session, session_factory, roster, settings):
        artist = roster["artist_x"]
        await add_agent_config(session, artist, daily_message_limit=1)
        provider = FakeProvider()
        await chat.send_message(session, artist.id, "uno", provider=provider, now=NOW, settings=settings)

        with pytest.raises(RateLimited) as exc_info:
            await chat.send_message(session, artist.id, "due", provider=provider, now=NOW, settings=settings)

        error = exc_info.value
        assert error.details["daily_limit"] == 1
        assert error.details["used_today"] == 1
        assert error.details["remaining"] == 0
        assert error.details["resets_at"] == "2026-03-11T00:00:00+00:00"
        assert len(provider.calls) == 1
        assert await _count(session_factory, ChatMessage) == 2


class TestQuotaAccounting:
    @pytest.mark.asyncio
    async def test_concurrent_sends_never_exceed_limit(self, session, session_factory, roster, settings):
        limit = 5
        artist = roster["artist_x"]
        await add_agent_config(session, artist, daily_message_limit=limit)
        provider = FakeProvider()

        async def send(i):
            async with session_factory() as s:
                return await chat.send_message(
                    s, artist.id, f"messaggio {i}", provider=provider, now=NOW, settings=settings
                )

        results = await asyncio.gather(*(send(i) for i in range(limit + 5)), return_exceptions=True)

        successes = [r for r in results if isinstance(r, chat.ChatReply)]
        failures = [r for r in results if not isinstance(r, chat.ChatReply)]
        assert len(successes) == limit
        assert len(failures) == 5
        assert all(isinstance(f, RateLimited) for f in failures)
        assert await _used(session_factory, artist.id) == limit
        assert await _count(session_factory, ChatMessage) == 2 * limit
        assert await _count(session_factory, ChatSession) == 1

        async with session_factory() as s:
            positions = (await s.execute(select(ChatMessage.position).order_by(ChatMessage.position))).scalars().all()
        assert positions == list(range(1, 2 * limit + 1))

    @pytest.mark.asyncio
    async def test_provider_failure_costs_nothing(self, session, session_factory, roster, settings):
        artist = roster["artist_x"]
        await add_agent_config(session, artist, daily_message_limit=5)
        await chat.send_message(session, artist.id, "prima", provider=FakeProvider(), now=NOW, settings=settings)
        before = await chat.get_remaining_messages(session, artist.id, now=NOW, settings=settings)

        with pytest.raises(ServiceUnavailable) as exc_info:
            await chat.send_message(
                session, artist.id, "seconda", provider=FakeProvider(fail=True), now=NOW, settings=settings
            )

        assert exc_info.value.retryable is True
        after = await chat.get_remaining_messages(session, artist.id, now=NOW, settings=settings)
        assert after.used_today == before.used_today == 1
        assert await _count(session_factory, ChatMessage) == 2

    @pytest.mark.asyncio
    async def test_provider_timeout_is_service_unavailable(self, session, session_factory, roster, settings):
        artist = roster["artist_x"]
        await add_agent_config(session, artist)
        settings.chat.timeout_seconds = 0.05

        class SlowProvider(FakeProvider):
            async def complete(self, messages, **kwargs):
                await asyncio.sleep(1)

        with pytest.raises(ServiceUnavailable):
            await chat.send_message(session, artist.id, "ciao", provider=SlowProvider(), now=NOW, settings=settings)
        assert await _used(session_factory, artist.id) == 0

    @pytest.mark.asyncio
    async def test_cancelled_request_costs_nothing(self, session, session_factory, roster, settings):
        artist = roster["artist_x"]
        await add_agent_config(session, artist)

        class HangingProvider(FakeProvider):
            def __init__(self):
                super().__init__()
                self.started = asyncio.Event()

            async def complete(self, messages, **kwargs):
                self.started.set()
                await asyncio.sleep(60)

        provider = HangingProvider()
        task = asyncio.create_task(
            chat.send_message(session, artist.id, "ciao", provider=provider, now=NOW, settings=settings)
        )
        await provider.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await _used(session_factory, artist.id) == 0
        assert await _count(session_factory, ChatMessage) == 0

    @pytest.mark.asyncio
    async def test_failed_write_costs_nothing(self, session, session_factory, roster, settings):
        artist = roster["artist_x"]
        await add_agent_config(session, artist)

        with patch("labelhub.assistant.quota.add_tokens", AsyncMock(side_effect=RuntimeError("disk full"))):
            with pytest.raises(RuntimeError):
                await chat.send_message(
                    session, artist.id, "ciao", provider=FakeProvider(), now=NOW, settings=settings
                )

        assert await _used(session_factory, artist.id) == 0
        assert await _count(session_factory, ChatMessage) == 0
        async with session_factory() as s:
            stored = (await s.execute(select(ChatSession))).scalars().all()
        assert all(cs.message_count == 0 for cs in stored)


class TestSessionWindowing:
    @pytest.mark.asyncio
    async def test_new_day_new_session(self, session, session_factory, roster, settings):
        artist = roster["artist_x"]
        await add_agent_config(session, artist)
        provider = FakeProvider()
        day_two = NOW + timedelta(days=1)

        first = await chat.send_message(session, artist.id, "lunedì", provider=provider, now=NOW, settings=settings)
        second = await chat.send_message(session, artist.id, "martedì", provider=provider, now=day_two, settings=settings)

        assert first.session_id != second.session_id
        # Yesterday's turns are not part of today's context
        assert [m["role"] for m in provider.calls[1]["messages"]] == ["system", "user"]

        async with session_factory() as s:
            day_one_messages = await chat.session_messages(s, roster["staff"], first.session_id)
            day_two_messages = await chat.session_messages(s, roster["staff"], second.session_id)
        assert {m.created_at.date() for m in day_one_messages} == {NOW.date()}
        assert {m.created_at.date() for m in day_two_messages} == {day_two.date()}
        assert [m.content for m in day_two_messages if m.role == "user"] == ["martedì"]

        # Quota resets with the day
        assert second.usage.used_today == 1

    @pytest.mark.asyncio
    async def test_todays_messages_and_session_list(self, session, roster, settings):
        artist = roster["artist_x"]
        await add_agent_config(session, artist)
        await chat.send_message(session, artist.id, "ieri", provider=FakeProvider(), now=NOW, settings=settings)
        await chat.send_message(
            session, artist.id, "oggi", provider=FakeProvider(), now=NOW + timedelta(days=1), settings=settings
        )

        today = await chat.todays_messages(session, roster["x"], artist.id, now=NOW + timedelta(days=1))
        assert [m.content for m in today if m.role == "user"] == ["oggi"]

        sessions = await chat.list_sessions(session, roster["staff"], artist.id)
        assert [s.context_date for s in sessions] == [(NOW + timedelta(days=1)).date(), NOW.date()]

        with pytest.raises(Forbidden):
            await chat.list_sessions(session, roster["x"], artist.id)


class TestRemainingMessages:
    @pytest.mark.asyncio
    async def test_disabled_agent_still_reports(self, session, roster, settings):
        usage = await chat.get_remaining_messages(session, roster["artist_x"].id, now=NOW, settings=settings)
        assert usage.is_enabled is False
        assert usage.daily_limit == settings.chat.default_daily_limit
        assert usage.used_today == 0
        assert usage.remaining == settings.chat.default_daily_limit

    @pytest.mark.asyncio
    async def test_reflects_configured_limit(self, session, roster, settings):
        await add_agent_config(session, roster["artist_x"], daily_message_limit=7)
        await chat.send_message(
            session, roster["artist_x"].id, "ciao", provider=FakeProvider(), now=NOW, settings=settings
        )
        usage = await chat.get_remaining_messages(session, roster["artist_x"].id, now=NOW, settings=settings)
        assert (usage.daily_limit, usage.used_today, usage.remaining, usage.is_enabled) == (7, 1, 6, True)
