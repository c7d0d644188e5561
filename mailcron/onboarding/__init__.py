"""
Onboarding Package - Telegram conversation for connecting mailboxes

Usage:
    from mailcron.onboarding import CommandRouter

    router = CommandRouter(db, telegram_client, base_url)
    router.process_update(update)
"""

from .commands import CommandRouter
from .state import InvalidTransition, SessionEvent, SessionState, TRANSITIONS, next_state

__all__ = [
    "CommandRouter",
    "InvalidTransition",
    "SessionEvent",
    "SessionState",
    "TRANSITIONS",
    "next_state",
]
