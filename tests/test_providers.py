"""
Tests for the Gmail and Outlook fetch adapters.

Message parsers are tested against hand-built API payloads; the adapters
run against Mock services so no network or OAuth is involved.
"""

import base64
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from mailcron.models import Provider
from mailcron.providers import (
    GmailAdapter,
    OutlookAdapter,
    FetchError,
    html_to_text,
    parse_gmail_message,
    parse_outlook_message,
)

from tests.conftest import NOW


def _b64(text):
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii")


def _gmail_payload(message_id="g1", subject="Interview Schedule", labels=("INBOX",), date=True):
    headers = [
        {"name": "Subject", "value": subject},
        {"name": "From", "value": "HR Team <hr@acme.com>"},
        {"name": "To", "value": "asha@gmail.com"},
    ]
    if date:
        headers.append({"name": "Date", "value": "Mon, 15 Jan 2024 10:00:00 +0000"})
    return {
        "id": message_id,
        "threadId": "t-" + message_id,
        "snippet": "Your interview is scheduled",
        "internalDate": "1705314600000",
        "labelIds": list(labels),
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": headers,
            "parts": [
                {"mimeType": "text/plain", "body": {"data": _b64("Plain text body")}},
                {"mimeType": "text/html", "body": {"data": _b64("<p>HTML body</p>")}},
            ],
        },
    }


def _outlook_payload(message_id="o1", content_type="html"):
    return {
        "id": message_id,
        "conversationId": "c1",
        "subject": "Coding test",
        "from": {"emailAddress": {"name": "Talent Team", "address": "talent@corp.com"}},
        "toRecipients": [{"emailAddress": {"address": "asha@outlook.com"}}],
        "receivedDateTime": "2024-01-15T10:00:00Z",
        "bodyPreview": "Your test link",
        "body": {"contentType": content_type, "content": "<p>Your <b>test</b> link</p>"},
        "webLink": f"https://outlook.live.com/owa/?ItemID={message_id}",
    }


# ===== Parsing =====


def test_html_to_text_strips_markup():
    html = "<html><head><style>p {color: red}</style></head><body><p>Hello <b>there</b></p></body></html>"

    assert html_to_text(html) == "Hello there"


def test_parse_gmail_message():
    """Test Gmail parser extracts headers, body and link."""
    message = parse_gmail_message(_gmail_payload())

    assert message.provider == Provider.GMAIL
    assert message.unique_id == "gmail_g1"
    assert message.subject == "Interview Schedule"
    assert message.sender == "HR Team <hr@acme.com>"
    assert message.to == "asha@gmail.com"
    assert message.body == "Plain text body", "Should prefer text/plain"
    assert message.snippet == "Your interview is scheduled"
    assert message.received_at == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
    assert message.web_link == "https://mail.google.com/mail/u/0/#inbox/g1"
    assert message.is_spam is False


def test_parse_gmail_html_only_body():
    payload = _gmail_payload()
    payload["payload"] = {
        "mimeType": "text/html",
        "headers": payload["payload"]["headers"],
        "body": {"data": _b64("<div>Online <i>assessment</i> link</div>")},
    }

    assert parse_gmail_message(payload).body == "Online assessment link"


def test_parse_gmail_falls_back_to_internal_date():
    message = parse_gmail_message(_gmail_payload(date=False))

    assert message.received_at == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


def test_parse_gmail_spam_label():
    assert parse_gmail_message(_gmail_payload(labels=("SPAM",))).is_spam is True


def test_parse_gmail_missing_subject():
    message = parse_gmail_message(_gmail_payload(subject=""))

    assert message.subject == "(No Subject)"


def test_parse_gmail_malformed_returns_none():
    assert parse_gmail_message({"payload": {}}) is None


def test_parse_outlook_message():
    """Test Outlook parser flattens HTML and formats the sender."""
    message = parse_outlook_message(_outlook_payload(), is_spam=True)

    assert message.provider == Provider.OUTLOOK
    assert message.unique_id == "outlook_o1"
    assert message.sender == "Talent Team <talent@corp.com>"
    assert message.to == "asha@outlook.com"
    assert message.body == "Your test link"
    assert message.snippet == "Your test link"
    assert message.received_at == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
    assert message.web_link == "https://outlook.live.com/owa/?ItemID=o1"
    assert message.is_spam is True


def test_parse_outlook_without_sender_or_link():
    payload = _outlook_payload()
    del payload["from"]
    del payload["webLink"]

    message = parse_outlook_message(payload)

    assert message.sender == "Unknown Sender"
    assert message.web_link == "https://outlook.office.com/mail/inbox/id/o1"


def test_parse_outlook_malformed_returns_none():
    assert parse_outlook_message({"id": "o1"}) is None


# ===== Gmail adapter =====


@pytest.fixture
def gmail():
    return GmailAdapter("client-id", "client-secret", "http://localhost:3000/oauth/gmail/callback")


def _gmail_service(listings, payloads):
    service = Mock()
    messages = service.users.return_value.messages.return_value
    messages.list.return_value.execute.side_effect = listings
    messages.get.return_value.execute.side_effect = payloads
    return service


def test_gmail_fetch_reads_inbox_and_spam(gmail, monkeypatch):
    """Test that inbox and spam are both queried from the window start."""
    service = _gmail_service(
        [{"messages": [{"id": "g1"}]}, {"messages": [{"id": "g2"}]}],
        [_gmail_payload("g1"), _gmail_payload("g2")],
    )
    monkeypatch.setattr(gmail, "_service", lambda token: service)
    since = NOW - timedelta(minutes=30)

    messages = gmail.fetch("refresh-token", since)

    assert [m.message_id for m in messages] == ["g1", "g2"]
    assert [m.is_spam for m in messages] == [False, True]

    list_calls = service.users.return_value.messages.return_value.list.call_args_list
    assert list_calls[0][1]["q"] == f"after:{int(since.timestamp())}"
    assert "labelIds" not in list_calls[0][1]
    assert list_calls[1][1]["labelIds"] == ["SPAM"]
    assert list_calls[1][1]["includeSpamTrash"] is True


def test_gmail_fetch_dedupes(gmail, monkeypatch):
    service = _gmail_service(
        [{"messages": [{"id": "g1"}]}, {"messages": [{"id": "g1"}]}],
        [_gmail_payload("g1"), _gmail_payload("g1", labels=("SPAM",))],
    )
    monkeypatch.setattr(gmail, "_service", lambda token: service)

    messages = gmail.fetch("refresh-token", NOW)

    assert len(messages) == 1


def test_gmail_auth_failure_is_fetch_error(gmail, monkeypatch):
    def revoked(token):
        raise Exception("invalid_grant: Token has been expired or revoked.")

    monkeypatch.setattr(gmail, "_service", revoked)

    with pytest.raises(FetchError, match="invalid_grant") as exc_info:
        gmail.fetch("refresh-token", NOW)

    assert exc_info.value.provider == Provider.GMAIL


def test_gmail_fetch_requires_credential(gmail):
    with pytest.raises(FetchError, match="No refresh token"):
        gmail.fetch("", NOW)


# ===== Outlook adapter =====


def _response(payload):
    response = Mock()
    response.json.return_value = payload
    return response


@pytest.fixture
def graph_session():
    session = Mock()
    session.post.return_value = _response({"access_token": "access-token", "refresh_token": "rt"})
    session.get.side_effect = [
        _response({"value": [_outlook_payload("o1")]}),
        _response({"value": [_outlook_payload("o2")]}),
    ]
    return session


@pytest.fixture
def outlook(graph_session):
    return OutlookAdapter(
        "client-id",
        "client-secret",
        "http://localhost:3000/oauth/outlook/callback",
        session=graph_session,
    )


def test_outlook_fetch_reads_inbox_and_junk(outlook, graph_session):
    """Test the refresh grant, the date filter and both folders."""
    messages = outlook.fetch("refresh-token", NOW - timedelta(minutes=30))

    assert [m.message_id for m in messages] == ["o1", "o2"]
    assert [m.is_spam for m in messages] == [False, True]

    token_data = graph_session.post.call_args[1]["data"]
    assert token_data["grant_type"] == "refresh_token"
    assert token_data["refresh_token"] == "refresh-token"

    inbox_call, junk_call = graph_session.get.call_args_list
    assert inbox_call[0][0].endswith("/me/mailFolders/inbox/messages")
    assert junk_call[0][0].endswith("/me/mailFolders/junkemail/messages")
    assert inbox_call[1]["params"]["$filter"] == "receivedDateTime ge 2024-01-15T10:00:00Z"
    assert inbox_call[1]["headers"]["Authorization"] == "Bearer access-token"


def test_outlook_token_error_is_fetch_error(outlook, graph_session):
    graph_session.post.return_value.raise_for_status.side_effect = requests.HTTPError("400 invalid_grant")

    with pytest.raises(FetchError, match="invalid_grant"):
        outlook.fetch("refresh-token", NOW)

    graph_session.get.assert_not_called()


def test_outlook_graph_error_is_fetch_error(outlook, graph_session):
    graph_session.get.side_effect = requests.ConnectionError("connection reset")

    with pytest.raises(FetchError, match="connection reset"):
        outlook.fetch("refresh-token", NOW)


def test_outlook_auth_url(outlook):
    url = urlparse(outlook.get_auth_url("state-123"))
    query = parse_qs(url.query)

    assert url.netloc == "login.microsoftonline.com"
    assert url.path == "/common/oauth2/v2.0/authorize"
    assert query["state"] == ["state-123"]
    assert "offline_access" in query["scope"][0]


def test_outlook_exchange_code(outlook, graph_session):
    graph_session.get.side_effect = [_response({"mail": None, "userPrincipalName": "asha@outlook.com"})]

    refresh_token, email = outlook.exchange_code("auth-code")

    assert refresh_token == "rt"
    assert email == "asha@outlook.com"
    assert graph_session.post.call_args[1]["data"]["grant_type"] == "authorization_code"
