from .conversations import CHAT, THERAPY, ConversationController, ConversationKind, SendOutcome
from .navigation import NavigationController, NavigationError, NavigationState, Screen

__all__ = [
    "CHAT",
    "THERAPY",
    "ConversationController",
    "ConversationKind",
    "NavigationController",
    "NavigationError",
    "NavigationState",
    "Screen",
    "SendOutcome",
]
