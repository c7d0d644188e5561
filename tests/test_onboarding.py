"""
Tests for the onboarding state machine and the Telegram command router.
"""

from unittest.mock import Mock

import pytest

from mailcron.classifier import keyword_classify
from mailcron.models import Provider
from mailcron.onboarding import CommandRouter
from mailcron.onboarding.commands import MESSAGES, PROVIDER_CHOICE_KEYBOARD
from mailcron.onboarding.state import InvalidTransition, SessionEvent, SessionState, next_state

from tests.conftest import CHAT_ID

BASE_URL = "https://bot.example.com"


def _message_update(text, chat_id=CHAT_ID):
    return {
        "update_id": 1,
        "message": {
            "message_id": 10,
            "from": {"id": int(chat_id), "first_name": "Asha", "username": "asha"},
            "chat": {"id": int(chat_id)},
            "text": text,
        },
    }


def _callback_update(data, chat_id=CHAT_ID):
    return {
        "update_id": 2,
        "callback_query": {
            "id": "cb-1",
            "from": {"id": int(chat_id), "first_name": "Asha"},
            "message": {"message_id": 11, "chat": {"id": int(chat_id)}},
            "data": data,
        },
    }


@pytest.fixture
def telegram():
    return Mock()


@pytest.fixture
def router(db, telegram, clock):
    return CommandRouter(db, telegram, BASE_URL, clock=clock)


def _state(db):
    return db.get_or_create_session(CHAT_ID)["state"]


def _last_text(telegram):
    return telegram.send_message.call_args[0][1]


# ===== State machine =====


@pytest.mark.parametrize(
    "state, event, expected",
    [
        (SessionState.START, SessionEvent.START_COMMAND, SessionState.AWAITING_PROVIDER_CHOICE),
        (SessionState.IDLE, SessionEvent.ADD_COMMAND, SessionState.AWAITING_PROVIDER_CHOICE),
        (SessionState.AWAITING_PROVIDER_CHOICE, SessionEvent.CHOOSE_GMAIL, SessionState.AWAITING_GMAIL_AUTH),
        (SessionState.SETUP_COMPLETE, SessionEvent.CHOOSE_OUTLOOK, SessionState.AWAITING_OUTLOOK_AUTH),
        (SessionState.AWAITING_GMAIL_AUTH, SessionEvent.AUTH_SUCCEEDED, SessionState.SETUP_COMPLETE),
        (SessionState.AWAITING_OUTLOOK_AUTH, SessionEvent.AUTH_FAILED, SessionState.AWAITING_PROVIDER_CHOICE),
        (SessionState.SETUP_COMPLETE, SessionEvent.SETUP_DONE, SessionState.IDLE),
        (SessionState.AWAITING_GMAIL_AUTH, SessionEvent.CANCEL, SessionState.IDLE),
    ],
)
def test_valid_transitions(state, event, expected):
    assert next_state(state, event) == expected


@pytest.mark.parametrize(
    "state, event",
    [
        (SessionState.START, SessionEvent.SETUP_DONE),
        (SessionState.START, SessionEvent.CHOOSE_GMAIL),
        (SessionState.IDLE, SessionEvent.AUTH_SUCCEEDED),
        (SessionState.AWAITING_PROVIDER_CHOICE, SessionEvent.AUTH_FAILED),
    ],
)
def test_invalid_transitions(state, event):
    with pytest.raises(InvalidTransition):
        next_state(state, event)


def test_next_state_accepts_stored_strings():
    assert next_state("START", "start_command") == SessionState.AWAITING_PROVIDER_CHOICE


# ===== Commands =====


def test_start_creates_user_and_offers_providers(router, db, telegram):
    """Test that /start registers the user and shows the provider buttons."""
    router.process_update(_message_update("/start"))

    assert db.get_recipient(CHAT_ID).first_name == "Asha"
    assert _state(db) == "AWAITING_PROVIDER_CHOICE"
    telegram.send_message.assert_called_once_with(
        CHAT_ID, MESSAGES["WELCOME"], reply_markup=PROVIDER_CHOICE_KEYBOARD
    )


def test_command_with_bot_suffix(router, telegram):
    router.process_update(_message_update("/help@MailCronBot"))

    telegram.send_message.assert_called_once_with(CHAT_ID, MESSAGES["HELP"])


def test_plain_text_is_ignored(router, telegram):
    router.process_update(_message_update("hello bot"))

    telegram.send_message.assert_not_called()


def test_connect_button_issues_oauth_link(router, db, telegram):
    """Test that choosing Gmail stores a CSRF token and sends the start URL."""
    router.process_update(_message_update("/start"))
    router.process_update(_callback_update("connect_gmail"))

    session = db.get_or_create_session(CHAT_ID)
    assert session["state"] == "AWAITING_GMAIL_AUTH"
    assert session["oauth_provider"] == "gmail"
    assert len(session["oauth_state"]) == 32

    telegram.answer_callback_query.assert_called_with("cb-1")
    keyboard = telegram.send_message.call_args[1]["reply_markup"]["inline_keyboard"]
    assert keyboard[0][0]["url"] == f"{BASE_URL}/oauth/gmail/start?state={session['oauth_state']}"


def test_connect_when_already_connected_offers_reconnect(router, db, telegram, recipient):
    router.process_update(_message_update("/add"))
    router.process_update(_callback_update("connect_gmail"))

    assert "already connected" in _last_text(telegram)
    assert telegram.send_message.call_args[1]["reply_markup"]["inline_keyboard"][0][0]["callback_data"] == (
        "reconnect_gmail"
    )
    assert _state(db) == "AWAITING_PROVIDER_CHOICE"


def test_reconnect_skips_already_connected_check(router, db, telegram, recipient):
    router.process_update(_message_update("/add"))
    router.process_update(_callback_update("reconnect_gmail"))

    assert _state(db) == "AWAITING_GMAIL_AUTH"


def test_out_of_order_callback_is_answered(router, db, telegram):
    """Test that a stale 'Done' button before setup gets a polite reply."""
    router.process_update(_callback_update("setup_done"))

    telegram.send_message.assert_called_once_with(CHAT_ID, MESSAGES["OUT_OF_ORDER"], parse_mode=None)
    assert _state(db) == "START"


def test_oauth_success_completes_setup(router, db, telegram):
    router.process_update(_message_update("/start"))
    router.process_update(_callback_update("connect_outlook"))
    db.update_provider_credentials(CHAT_ID, Provider.OUTLOOK, "rt", "asha@outlook.com")

    router.handle_oauth_success(CHAT_ID, Provider.OUTLOOK, "asha@outlook.com")

    session = db.get_or_create_session(CHAT_ID)
    assert session["state"] == "SETUP_COMPLETE"
    assert session["oauth_state"] is None
    assert "Outlook Connected Successfully" in telegram.send_message.call_args_list[-2][0][1]
    assert _last_text(telegram) == MESSAGES["ADD_ANOTHER"]

    router.process_update(_callback_update("setup_done"))

    assert _state(db) == "IDLE"
    assert "✅ Outlook: asha@outlook.com" in _last_text(telegram)


def test_oauth_failure_returns_to_provider_choice(router, db, telegram):
    router.process_update(_message_update("/start"))
    router.process_update(_callback_update("connect_gmail"))

    router.handle_oauth_failure(CHAT_ID, Provider.GMAIL, "access_denied")

    assert _state(db) == "AWAITING_PROVIDER_CHOICE"
    assert "access\\_denied" in _last_text(telegram)


def test_cancel(router, db, telegram):
    router.process_update(_message_update("/start"))
    router.process_update(_callback_update("cancel"))

    assert _state(db) == "IDLE"
    assert _last_text(telegram) == MESSAGES["CANCELLED"]


def test_pause_and_resume(router, db, telegram, recipient):
    router.process_update(_message_update("/pause"))
    assert db.get_recipient(CHAT_ID).notifications_enabled is False
    assert db.list_active_recipients() == []

    router.process_update(_message_update("/resume"))
    assert db.get_recipient(CHAT_ID).notifications_enabled is True


def test_status_lists_accounts(router, telegram, recipient):
    router.process_update(_message_update("/status"))

    text = _last_text(telegram)
    assert "✅ Gmail: asha@gmail.com" in text
    assert "❌ Outlook: Not connected" in text
    assert "Emails notified: 0" in text


def test_status_without_user(router, telegram):
    router.process_update(_message_update("/status"))

    assert _last_text(telegram) == MESSAGES["NO_ACCOUNTS"]


def test_history(router, db, telegram, recipient, important_message):
    router.process_update(_message_update("/history"))
    assert _last_text(telegram) == MESSAGES["NO_HISTORY"]

    db.upsert_notification(CHAT_ID, important_message, keyword_classify(important_message).to_result())
    router.process_update(_message_update("/history"))

    text = _last_text(telegram)
    assert "Recent Important Emails" in text
    assert "Interview invitation" in text


def test_handler_error_sends_generic_reply(router, telegram):
    """Test that a failing handler is reported to the user, not raised."""
    telegram.send_message.side_effect = [RuntimeError("network"), None]

    router.process_update(_message_update("/help"))

    telegram.send_message.assert_called_with(CHAT_ID, MESSAGES["ERROR"], parse_mode=None)


def test_process_update_never_raises(router, telegram):
    telegram.send_message.side_effect = RuntimeError("telegram down")
    telegram.answer_callback_query.side_effect = RuntimeError("telegram down")

    router.process_update(_message_update("/start"))
    router.process_update(_callback_update("connect_gmail"))
    router.process_update({"update_id": 3})
