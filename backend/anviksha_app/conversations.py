from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Sequence

from anviksha_ai.errors import AnvikshaError
from anviksha_ai.models import BlobPart
from anviksha_ai.service import CapabilityService
from anviksha_store.models import ChatMessage, ConversationSession
from anviksha_store.sessions import SessionStore
from anviksha_store.time_utils import utc_now

logger = logging.getLogger(__name__)

TITLE_CHARS = 25

Responder = Callable[[str, Sequence[tuple[str, str]], BlobPart | None], Awaitable[str]]


@dataclass(frozen=True)
class ConversationKind:
    name: str
    greeting: str
    default_title: str
    fallback_title: str
    failure_reply: str


CHAT = ConversationKind(
    name="chat",
    greeting=(
        "I am the Anviksha Genesis Assistant. I can help analyze medical data "
        "and provide clinical-grade support."
    ),
    default_title="New Consultation",
    fallback_title="Image Analysis",
    failure_reply="Connection error. Please verify internet status.",
)

THERAPY = ConversationKind(
    name="therapy",
    greeting="Hello. I'm Dr. Anviksha. I'm here to listen without judgment. How are you feeling right now?",
    default_title="New Session",
    fallback_title="Therapy Session",
    failure_reply="I'm having trouble connecting. Please take a deep breath and try again.",
)


@dataclass(frozen=True)
class SendOutcome:
    session_id: str
    user_message: ChatMessage
    reply: ChatMessage | None
    failed: bool = False
    error_code: str | None = None
    failure_reply: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "userMessage": self.user_message.to_payload(),
            "reply": self.reply.to_payload() if self.reply else None,
            "failed": self.failed,
            "errorCode": self.error_code,
            "failureReply": self.failure_reply,
        }


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


class ConversationController:
    """Session list for one conversation kind.

    Sessions are kept newest-first and the whole list is written back after
    every change. Replies are appended to the session the message was sent
    from, looked up by id, so a reply that lands after the user switched
    sessions still goes to the right place.
    """

    def __init__(
        self,
        kind: ConversationKind,
        store: SessionStore,
        responder: Responder,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.kind = kind
        self.store = store
        self._responder = responder
        self._clock = clock
        self._sessions = store.load()
        self.active_id: str | None = None

    @classmethod
    def for_chat(cls, service: CapabilityService, store: SessionStore, **kwargs: Any) -> "ConversationController":
        async def respond(text: str, history: Sequence[tuple[str, str]], image: BlobPart | None) -> str:
            return await service.chat(text, history=history, image=image)

        return cls(CHAT, store, respond, **kwargs)

    @classmethod
    def for_therapy(cls, service: CapabilityService, store: SessionStore, **kwargs: Any) -> "ConversationController":
        async def respond(text: str, history: Sequence[tuple[str, str]], image: BlobPart | None) -> str:
            return await service.therapy(text, history=history)

        return cls(THERAPY, store, respond, **kwargs)

    @property
    def sessions(self) -> list[ConversationSession]:
        return list(self._sessions)

    def _find(self, session_id: str) -> ConversationSession | None:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def _persist(self) -> None:
        self.store.save(self._sessions)

    def active(self) -> ConversationSession:
        if self.active_id is not None:
            session = self._find(self.active_id)
            if session is not None:
                return session
        return self.resume()

    def resume(self) -> ConversationSession:
        if self._sessions:
            latest = max(self._sessions, key=lambda session: session.timestamp)
            self.active_id = latest.id
            return latest
        return self.start_new()

    def start_new(self) -> ConversationSession:
        now = self._clock()
        session = ConversationSession(
            id=_new_id("session"),
            title=self.kind.default_title,
            timestamp=now,
            messages=[ChatMessage(id=_new_id("msg"), role="ai", text=self.kind.greeting, timestamp=now)],
        )
        self._sessions.insert(0, session)
        self.active_id = session.id
        self._persist()
        return session

    def switch(self, session_id: str) -> ConversationSession:
        session = self._find(session_id)
        if session is None:
            raise LookupError(f"Session '{session_id}' not found.")
        self.active_id = session.id
        return session

    def delete(self, session_id: str) -> ConversationSession:
        """Remove a session and return the one that is active afterwards."""
        session = self._find(session_id)
        if session is None:
            raise LookupError(f"Session '{session_id}' not found.")
        self._sessions.remove(session)
        if self.active_id == session_id or self.active_id is None:
            self.active_id = None
            if not self._sessions:
                return self.start_new()
            self._persist()
            return self.resume()
        self._persist()
        return self.active()

    async def send(
        self,
        text: str,
        *,
        image: BlobPart | None = None,
        image_ref: str | None = None,
        session_id: str | None = None,
    ) -> SendOutcome:
        cleaned = (text or "").strip()
        if not cleaned and image is None:
            raise ValueError("Message must contain text or an image")
        if self.kind is THERAPY and not cleaned:
            raise ValueError("Therapy messages must contain text")

        session = self._find(session_id) if session_id else self.active()
        if session is None:
            raise LookupError(f"Session '{session_id}' not found.")
        target_id = session.id
        history = self._history(session)

        user_message = ChatMessage(
            id=_new_id("msg"),
            role="user",
            text=cleaned,
            timestamp=self._clock(),
            image=image_ref,
        )
        if session.user_message_count() == 0:
            session.title = cleaned[:TITLE_CHARS] or self.kind.fallback_title
        session.messages.append(user_message)
        self._persist()

        try:
            reply_text = await self._responder(cleaned, history, image)
        except AnvikshaError as exc:
            logger.warning("%s reply failed (%s): %s", self.kind.name, exc.code, exc)
            return SendOutcome(
                session_id=target_id,
                user_message=user_message,
                reply=None,
                failed=True,
                error_code=exc.code,
                failure_reply=self.kind.failure_reply,
            )

        reply = ChatMessage(id=_new_id("msg"), role="ai", text=reply_text, timestamp=self._clock())
        target = self._find(target_id)
        if target is None:
            logger.info("Session %s was deleted before its reply arrived", target_id)
            return SendOutcome(session_id=target_id, user_message=user_message, reply=reply)
        target.messages.append(reply)
        self._persist()
        return SendOutcome(session_id=target_id, user_message=user_message, reply=reply)

    @staticmethod
    def _history(session: ConversationSession) -> list[tuple[str, str]]:
        # Provider history starts at the first user turn; the greeting is UI only.
        history: list[tuple[str, str]] = []
        seen_user = False
        for message in session.messages:
            if message.role == "user":
                seen_user = True
            if seen_user:
                history.append((message.role, message.text))
        return history

    def grouped(self, now: datetime | None = None) -> dict[str, list[ConversationSession]]:
        current = now or self._clock()
        today = current.date()
        yesterday = today - timedelta(days=1)
        groups: dict[str, list[ConversationSession]] = {"today": [], "yesterday": [], "older": []}
        ordered = sorted(self._sessions, key=lambda session: session.timestamp, reverse=True)
        for session in ordered:
            day = session.timestamp.astimezone(current.tzinfo).date() if current.tzinfo else session.timestamp.date()
            if day == today:
                groups["today"].append(session)
            elif day == yesterday:
                groups["yesterday"].append(session)
            else:
                groups["older"].append(session)
        return groups
