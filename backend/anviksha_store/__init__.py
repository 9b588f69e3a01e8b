from .database import LocalStateDB
from .models import ChatMessage, ConversationSession, UserProfile
from .profile import ProfileStore
from .records import RecordStore
from .sessions import CHAT_SESSIONS_KEY, THERAPY_SESSIONS_KEY, SessionStore

__all__ = [
    "CHAT_SESSIONS_KEY",
    "THERAPY_SESSIONS_KEY",
    "ChatMessage",
    "ConversationSession",
    "LocalStateDB",
    "ProfileStore",
    "RecordStore",
    "SessionStore",
    "UserProfile",
]
