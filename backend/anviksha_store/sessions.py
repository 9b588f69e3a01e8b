from __future__ import annotations

import logging

from .database import LocalStateDB
from .models import ConversationSession

logger = logging.getLogger(__name__)

CHAT_SESSIONS_KEY = "anviksha_chat_sessions"
THERAPY_SESSIONS_KEY = "anviksha_therapy_sessions"


class SessionStore:
    """Whole-list persistence of one conversation kind (chat or therapy)."""

    def __init__(self, db: LocalStateDB, key: str) -> None:
        self._db = db
        self.key = key

    def load(self) -> list[ConversationSession]:
        raw = self._db.read_json(self.key, [])
        if not isinstance(raw, list):
            logger.warning("Stored sessions under %s were not a list; starting empty", self.key)
            return []
        sessions: list[ConversationSession] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                sessions.append(ConversationSession.from_payload(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping corrupt session under %s: %s", self.key, exc)
        return sessions

    def save(self, sessions: list[ConversationSession]) -> None:
        self._db.write_json(self.key, [session.to_payload() for session in sessions])
