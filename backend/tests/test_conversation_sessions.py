from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from anviksha_ai.errors import QuotaExhaustedError
from anviksha_ai.models import BlobPart
from anviksha_app.conversations import CHAT, THERAPY, ConversationController
from anviksha_store.sessions import CHAT_SESSIONS_KEY, THERAPY_SESSIONS_KEY, SessionStore

NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


class FakeResponder:
    def __init__(self, replies: list[object] | None = None) -> None:
        self.replies = list(replies or ["Noted."])
        self.calls: list[tuple[str, list[tuple[str, str]], object]] = []

    async def __call__(self, text, history, image):
        self.calls.append((text, list(history), image))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return str(reply)


class Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


def _chat(db, responder=None, clock=None) -> ConversationController:
    return ConversationController(
        CHAT,
        SessionStore(db, CHAT_SESSIONS_KEY),
        responder or FakeResponder(),
        clock=clock or Clock(NOW),
    )


def test_resume_without_sessions_creates_greeting_session(db):
    chat = _chat(db)
    session = chat.resume()

    assert session.title == "New Consultation"
    assert [message.role for message in session.messages] == ["ai"]
    assert session.messages[0].text == CHAT.greeting
    assert chat.active_id == session.id
    assert SessionStore(db, CHAT_SESSIONS_KEY).load()[0].id == session.id


def test_resume_picks_most_recent_session(db):
    clock = Clock(NOW)
    chat = _chat(db, clock=clock)
    older = chat.start_new()
    clock.now = NOW + timedelta(hours=1)
    newer = chat.start_new()
    chat.switch(older.id)

    reloaded = _chat(db, clock=clock)
    assert reloaded.resume().id == newer.id


def test_deleting_only_session_creates_fresh_greeting(db):
    chat = _chat(db)
    only = chat.resume()

    active = chat.delete(only.id)

    assert active.id != only.id
    assert chat.active_id == active.id
    assert len(chat.sessions) == 1
    assert len(active.messages) == 1
    assert active.messages[0].text == CHAT.greeting


def test_deleting_active_session_selects_most_recent_remaining(db):
    clock = Clock(NOW)
    chat = _chat(db, clock=clock)
    first = chat.start_new()
    clock.now = NOW + timedelta(minutes=5)
    second = chat.start_new()
    clock.now = NOW + timedelta(minutes=10)
    third = chat.start_new()

    assert chat.delete(third.id).id == second.id
    assert chat.delete(first.id).id == second.id
    with pytest.raises(LookupError):
        chat.delete("session-missing")


def test_send_titles_session_and_persists_reply(db):
    responder = FakeResponder(["Migraine is likely; stay hydrated."])
    chat = _chat(db, responder)
    session = chat.resume()

    outcome = asyncio.run(chat.send("I have had a throbbing headache for two days"))

    assert outcome.failed is False
    assert outcome.reply.text == "Migraine is likely; stay hydrated."
    stored = SessionStore(db, CHAT_SESSIONS_KEY).load()[0]
    assert stored.id == session.id
    assert stored.title == "I have had a throbbing he"
    assert [message.role for message in stored.messages] == ["ai", "user", "ai"]
    # The greeting is not sent as provider history.
    assert responder.calls[0][1] == []


def test_later_messages_keep_first_title_and_send_history(db):
    responder = FakeResponder(["First reply", "Second reply"])
    chat = _chat(db, responder)
    chat.resume()
    asyncio.run(chat.send("Fever since morning"))
    asyncio.run(chat.send("Now also chills"))

    session = chat.active()
    assert session.title == "Fever since morning"
    assert responder.calls[1][1] == [("user", "Fever since morning"), ("ai", "First reply")]


def test_image_only_message_uses_fallback_title(db):
    chat = _chat(db)
    chat.resume()
    outcome = asyncio.run(
        chat.send("", image=BlobPart(data=b"img", mime_type="image/png"), image_ref="rash.png")
    )
    assert chat.active().title == "Image Analysis"
    assert outcome.user_message.image == "rash.png"


def test_failure_reply_is_returned_but_not_persisted(db):
    chat = _chat(db, FakeResponder([QuotaExhaustedError("all keys limited", attempts=2)]))
    chat.resume()

    outcome = asyncio.run(chat.send("Is this serious?"))

    assert outcome.failed is True
    assert outcome.error_code == "quota_exhausted"
    assert outcome.failure_reply == "Connection error. Please verify internet status."
    stored = SessionStore(db, CHAT_SESSIONS_KEY).load()[0]
    assert [message.role for message in stored.messages] == ["ai", "user"]


def test_reply_lands_in_the_session_it_was_sent_from(db):
    class GatedResponder:
        def __init__(self) -> None:
            self.release = asyncio.Event()

        async def __call__(self, text, history, image):
            await self.release.wait()
            return "Reply for the first session"

    async def scenario(chat: ConversationController, responder: GatedResponder):
        first = chat.resume()
        task = asyncio.create_task(chat.send("Question in first session"))
        await asyncio.sleep(0)
        second = chat.start_new()
        responder.release.set()
        await task
        return first, second

    responder = GatedResponder()
    chat = _chat(db, responder)
    first, second = asyncio.run(scenario(chat, responder))

    sessions = {session.id: session for session in SessionStore(db, CHAT_SESSIONS_KEY).load()}
    assert sessions[first.id].messages[-1].text == "Reply for the first session"
    assert len(sessions[second.id].messages) == 1
    assert chat.active_id == second.id


def test_send_to_background_session_keeps_active_session(db):
    responder = FakeResponder(["Reply in the background"])
    chat = _chat(db, responder)
    background = chat.resume()
    foreground = chat.start_new()

    outcome = asyncio.run(chat.send("Follow-up question", session_id=background.id))

    assert outcome.session_id == background.id
    assert chat.active_id == foreground.id
    sessions = {session.id: session for session in SessionStore(db, CHAT_SESSIONS_KEY).load()}
    assert sessions[background.id].messages[-1].text == "Reply in the background"
    assert len(sessions[foreground.id].messages) == 1

    with pytest.raises(LookupError):
        asyncio.run(chat.send("Hello", session_id="missing"))


def test_therapy_uses_its_own_greeting_and_failure_message(db):
    therapy = ConversationController(
        THERAPY,
        SessionStore(db, THERAPY_SESSIONS_KEY),
        FakeResponder([QuotaExhaustedError("limited", attempts=1)]),
        clock=Clock(NOW),
    )
    session = therapy.resume()
    assert session.title == "New Session"
    assert session.messages[0].text.startswith("Hello. I'm Dr. Anviksha.")

    outcome = asyncio.run(therapy.send("I feel anxious"))
    assert outcome.failure_reply == "I'm having trouble connecting. Please take a deep breath and try again."
    assert SessionStore(db, CHAT_SESSIONS_KEY).load() == []

    with pytest.raises(ValueError):
        asyncio.run(therapy.send("   "))


def test_grouped_splits_by_day(db):
    clock = Clock(NOW - timedelta(days=3))
    chat = _chat(db, clock=clock)
    old = chat.start_new()
    clock.now = NOW - timedelta(days=1)
    yesterday = chat.start_new()
    clock.now = NOW
    today = chat.start_new()

    groups = chat.grouped(NOW)
    assert [session.id for session in groups["today"]] == [today.id]
    assert [session.id for session in groups["yesterday"]] == [yesterday.id]
    assert [session.id for session in groups["older"]] == [old.id]
