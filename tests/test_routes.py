"""
Tests for the Flask routes, built through the application factory with an
in-memory database, a Mock Telegram client and fake fetch adapters.
"""

from unittest.mock import Mock

import pytest

from mailcron import create_app
from mailcron.models import Provider

from tests.conftest import CHAT_ID, FakeFetcher

BASE_URL = "https://bot.example.com"


@pytest.fixture
def telegram():
    return Mock()


@pytest.fixture
def fetchers():
    return {Provider.GMAIL: FakeFetcher(), Provider.OUTLOOK: FakeFetcher(Provider.OUTLOOK)}


@pytest.fixture
def app(db, telegram, fetchers, clock, monkeypatch):
    """Flask app in keyword-only mode with every collaborator injected."""
    for var in ("GEMINI_API_KEY", "GOOGLE_API_KEY", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("BASE_URL", BASE_URL)

    app = create_app(database=db, telegram=telegram, fetchers=fetchers, clock=clock)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def _await_auth(db, provider=Provider.GMAIL, oauth_state="state-abc"):
    db.find_or_create_user({"id": int(CHAT_ID), "first_name": "Asha"})
    db.update_session(
        CHAT_ID,
        state=f"AWAITING_{provider.name}_AUTH",
        oauth_state=oauth_state,
        oauth_provider=provider.value,
    )


# ===== Cron =====


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json()["status"] == "OK"
    assert response.get_json()["database"] == "connected"


def test_cron_check_runs_sweep(client, recipient, fetchers, telegram, important_message):
    """Test that /cron/check sweeps active users and returns the summary."""
    fetchers[Provider.GMAIL].messages = [important_message]

    response = client.get("/cron/check")

    data = response.get_json()
    assert response.status_code == 200
    assert data["runId"].startswith("run_")
    assert data["usersProcessed"] == 1
    assert data["emailsScanned"] == 1
    assert data["notificationsSent"] == 1
    assert data["failures"] == 0
    telegram.send_message.assert_called_once()

    # A second run finds the message already delivered
    second = client.get("/cron/check").get_json()
    assert second["notificationsSent"] == 0
    assert telegram.send_message.call_count == 1


def test_cron_runs_share_recipient_locks(app):
    services = app.extensions["mailcron"]

    first, second = services.orchestrator(), services.orchestrator()

    assert first is not second
    assert first.user_sweep.provider_sweep.locks is second.user_sweep.provider_sweep.locks


def test_cron_check_reports_listing_failure(client, db, monkeypatch):
    monkeypatch.setattr(db, "list_active_recipients", Mock(side_effect=RuntimeError("database is locked")))

    response = client.get("/cron/check")

    assert response.status_code == 500
    assert response.get_json()["error"] == "database is locked"
    assert response.get_json()["runId"].startswith("run_")


def test_debug_stats(client, recipient):
    response = client.get("/debug/stats")

    assert response.get_json() == {"users": 1, "activeUsers": 1, "emails": 0, "importantEmails": 0}


# ===== Webhook =====


def test_telegram_webhook_dispatches_update(client, db, telegram):
    update = {
        "update_id": 1,
        "message": {
            "message_id": 1,
            "from": {"id": int(CHAT_ID), "first_name": "Asha"},
            "chat": {"id": int(CHAT_ID)},
            "text": "/start",
        },
    }

    response = client.post("/webhook/telegram", json=update)

    assert response.status_code == 200
    assert db.get_recipient(CHAT_ID) is not None
    telegram.send_message.assert_called_once()


def test_telegram_webhook_tolerates_garbage(client):
    response = client.post("/webhook/telegram", data="not json", content_type="text/plain")

    assert response.status_code == 200


def test_webhook_setup(client, telegram):
    response = client.get("/webhook/setup")

    assert response.status_code == 200
    assert response.get_json()["webhookUrl"] == f"{BASE_URL}/webhook/telegram"
    telegram.set_webhook.assert_called_once_with(f"{BASE_URL}/webhook/telegram")


def test_webhook_setup_without_token(client, telegram):
    telegram.configured = False

    response = client.get("/webhook/setup")

    assert response.status_code == 400
    telegram.set_webhook.assert_not_called()


def test_webhook_status_and_delete(client, telegram):
    telegram.get_webhook_info.return_value = {"url": f"{BASE_URL}/webhook/telegram", "pending_update_count": 0}

    assert client.get("/webhook/status").get_json()["pending_update_count"] == 0
    assert client.get("/webhook/delete").get_json()["success"] is True
    telegram.delete_webhook.assert_called_once()


# ===== OAuth =====


def test_oauth_start_redirects_to_provider(client, db):
    _await_auth(db)

    response = client.get("/oauth/gmail/start?state=state-abc")

    assert response.status_code == 302
    assert response.headers["Location"] == "https://auth.example.com/gmail?state=state-abc"


def test_oauth_start_rejects_missing_or_unknown_state(client, db):
    assert client.get("/oauth/gmail/start").status_code == 400
    assert client.get("/oauth/gmail/start?state=forged").status_code == 400


def test_oauth_unknown_provider(client):
    assert client.get("/oauth/yahoo/start?state=x").status_code == 404


def test_oauth_callback_connects_account(client, db, telegram):
    """Test that a good callback stores the token and tells the user."""
    _await_auth(db)

    response = client.get("/oauth/gmail/callback?code=code1&state=state-abc")

    assert response.status_code == 200
    assert "Connection Successful!" in response.get_data(as_text=True)
    assert "student@gmail.example.com" in response.get_data(as_text=True)

    account = db.get_recipient(CHAT_ID).account(Provider.GMAIL)
    assert account.enabled is True
    assert account.refresh_token == "refresh-code1"

    session = db.get_or_create_session(CHAT_ID)
    assert session["state"] == "SETUP_COMPLETE"
    assert session["oauth_state"] is None
    assert telegram.send_message.call_count == 2


def test_oauth_callback_state_is_single_use(client, db):
    _await_auth(db)

    client.get("/oauth/gmail/callback?code=code1&state=state-abc")
    replay = client.get("/oauth/gmail/callback?code=code1&state=state-abc")

    assert replay.status_code == 400


def test_oauth_callback_provider_denied(client, db, telegram):
    _await_auth(db)

    response = client.get("/oauth/gmail/callback?error=access_denied&state=state-abc")

    assert "Connection Failed" in response.get_data(as_text=True)
    assert "Connection Failed" in telegram.send_message.call_args[0][1]
    assert db.get_or_create_session(CHAT_ID)["state"] == "AWAITING_PROVIDER_CHOICE"


def test_oauth_callback_provider_mismatch(client, db):
    _await_auth(db, Provider.GMAIL)

    response = client.get("/oauth/outlook/callback?code=code1&state=state-abc")

    assert response.status_code == 400
    assert db.get_recipient(CHAT_ID).account(Provider.OUTLOOK).enabled is False


def test_oauth_callback_exchange_failure(client, db, fetchers, telegram):
    _await_auth(db)
    fetchers[Provider.GMAIL].exchange_code = Mock(side_effect=RuntimeError("invalid_client"))

    response = client.get("/oauth/gmail/callback?code=code1&state=state-abc")

    assert "invalid_client" in response.get_data(as_text=True)
    assert db.get_recipient(CHAT_ID).account(Provider.GMAIL).enabled is False
