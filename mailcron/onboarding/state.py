"""
Onboarding conversation states and the transitions allowed between them.
"""

from enum import Enum
from typing import Dict, Tuple


class SessionState(str, Enum):
    START = "START"
    AWAITING_PROVIDER_CHOICE = "AWAITING_PROVIDER_CHOICE"
    AWAITING_GMAIL_AUTH = "AWAITING_GMAIL_AUTH"
    AWAITING_OUTLOOK_AUTH = "AWAITING_OUTLOOK_AUTH"
    SETUP_COMPLETE = "SETUP_COMPLETE"
    IDLE = "IDLE"


class SessionEvent(str, Enum):
    START_COMMAND = "start_command"
    ADD_COMMAND = "add_command"
    CHOOSE_GMAIL = "choose_gmail"
    CHOOSE_OUTLOOK = "choose_outlook"
    AUTH_SUCCEEDED = "auth_succeeded"
    AUTH_FAILED = "auth_failed"
    SETUP_DONE = "setup_done"
    CANCEL = "cancel"


class InvalidTransition(Exception):
    """Raised for an event the current state does not accept."""

    def __init__(self, state: SessionState, event: SessionEvent):
        super().__init__(f"Event {event.value} is not valid in state {state.value}")
        self.state = state
        self.event = event


S = SessionState
E = SessionEvent

_AWAITING_AUTH = (S.AWAITING_GMAIL_AUTH, S.AWAITING_OUTLOOK_AUTH)
_CONNECTING = (S.AWAITING_PROVIDER_CHOICE, *_AWAITING_AUTH, S.SETUP_COMPLETE, S.IDLE)

TRANSITIONS: Dict[Tuple[SessionState, SessionEvent], SessionState] = {
    # /start and /add restart provider selection from anywhere
    **{(state, E.START_COMMAND): S.AWAITING_PROVIDER_CHOICE for state in S},
    **{(state, E.ADD_COMMAND): S.AWAITING_PROVIDER_CHOICE for state in S},
    # Provider buttons stay usable on older messages once setup has begun
    **{(state, E.CHOOSE_GMAIL): S.AWAITING_GMAIL_AUTH for state in _CONNECTING},
    **{(state, E.CHOOSE_OUTLOOK): S.AWAITING_OUTLOOK_AUTH for state in _CONNECTING},
    **{(state, E.AUTH_SUCCEEDED): S.SETUP_COMPLETE for state in _AWAITING_AUTH},
    **{(state, E.AUTH_FAILED): S.AWAITING_PROVIDER_CHOICE for state in _AWAITING_AUTH},
    (S.SETUP_COMPLETE, E.SETUP_DONE): S.IDLE,
    (S.AWAITING_PROVIDER_CHOICE, E.SETUP_DONE): S.IDLE,
    (S.IDLE, E.SETUP_DONE): S.IDLE,
    **{(state, E.CANCEL): S.IDLE for state in _CONNECTING},
}


def next_state(state: SessionState, event: SessionEvent) -> SessionState:
    """
    Return the state reached by applying ``event`` in ``state``.

    Raises:
        InvalidTransition: If the pair is not in TRANSITIONS
    """
    try:
        return TRANSITIONS[(SessionState(state), SessionEvent(event))]
    except KeyError:
        raise InvalidTransition(SessionState(state), SessionEvent(event))
