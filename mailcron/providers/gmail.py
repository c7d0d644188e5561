"""
Gmail Adapter - Gmail API authentication and message fetching

Fetches the inbox and the spam folder for a time window using a stored
refresh token, and normalizes each message.
"""

import base64
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, List, Optional, Tuple

import httplib2
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from mailcron.models import NormalizedMessage, Provider
from .base import (
    BODY_MAX_CHARS,
    NO_SUBJECT,
    SNIPPET_MAX_CHARS,
    FetchAdapter,
    FetchError,
    dedupe,
    html_to_text,
    truncate,
)

logger = logging.getLogger(__name__)

# Gmail API scopes - readonly access to messages
SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
WEB_LINK = "https://mail.google.com/mail/u/0/#inbox/{message_id}"
SPAM_LABEL = "SPAM"


def _get_headers(message: dict) -> Dict[str, str]:
    """Extract common headers from a Gmail message."""
    headers = {}
    for header in message.get("payload", {}).get("headers", []):
        name = header["name"].lower()
        if name in ("subject", "from", "to", "date"):
            headers[name] = header["value"]
    return headers


def _decode(data: str) -> str:
    return base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")


def _find_part(payload: dict, mime_type: str) -> Optional[str]:
    """Recursively find the first body part of ``mime_type``."""
    if payload.get("mimeType") == mime_type and payload.get("body", {}).get("data"):
        return _decode(payload["body"]["data"])
    for part in payload.get("parts", []) or []:
        found = _find_part(part, mime_type)
        if found:
            return found
    return None


def get_email_body(payload: dict) -> str:
    """
    Extract a plain-text body from a Gmail message payload.

    Prefers text/plain; falls back to text/html flattened to text.
    """
    if not payload.get("parts") and payload.get("body", {}).get("data"):
        body = _decode(payload["body"]["data"])
        if payload.get("mimeType") == "text/html":
            return html_to_text(body)
        return body

    text = _find_part(payload, "text/plain")
    if text:
        return text
    html = _find_part(payload, "text/html")
    return html_to_text(html) if html else ""


def _received_at(message: dict, date_header: str) -> datetime:
    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        except (TypeError, ValueError):
            pass
    internal = message.get("internalDate")
    if internal:
        return datetime.fromtimestamp(int(internal) / 1000, tz=timezone.utc)
    return datetime.now(timezone.utc)


def parse_gmail_message(message: dict, is_spam: bool = False) -> Optional[NormalizedMessage]:
    """
    Parse a Gmail API message (format=full) into a NormalizedMessage.

    Returns None when the payload is too malformed to use.
    """
    try:
        headers = _get_headers(message)
        message_id = message["id"]
        return NormalizedMessage(
            provider=Provider.GMAIL,
            message_id=message_id,
            thread_id=message.get("threadId"),
            subject=headers.get("subject") or NO_SUBJECT,
            sender=headers.get("from", ""),
            to=headers.get("to", ""),
            received_at=_received_at(message, headers.get("date", "")),
            snippet=truncate(message.get("snippet", ""), SNIPPET_MAX_CHARS),
            body=truncate(get_email_body(message.get("payload", {})), BODY_MAX_CHARS),
            web_link=WEB_LINK.format(message_id=message_id),
            is_spam=is_spam or SPAM_LABEL in (message.get("labelIds") or []),
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Failed to parse Gmail message {message.get('id')}: {e}")
        return None


class GmailAdapter(FetchAdapter):
    """Gmail fetch adapter for web-flow refresh tokens."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        max_results: int = 50,
        timeout: float = 30,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.max_results = max_results
        self.timeout = timeout

    @property
    def provider(self) -> Provider:
        return Provider.GMAIL

    def _client_config(self) -> dict:
        return {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [self.redirect_uri],
            }
        }

    def _flow(self, state: Optional[str] = None) -> Flow:
        return Flow.from_client_config(
            self._client_config(),
            scopes=SCOPES,
            redirect_uri=self.redirect_uri,
            state=state,
            autogenerate_code_verifier=False,
        )

    def _service(self, refresh_token: str):
        creds = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=SCOPES,
        )
        # Force a refresh so an expired or revoked token fails here
        creds.refresh(Request())
        http = AuthorizedHttp(creds, http=httplib2.Http(timeout=self.timeout))
        return build("gmail", "v1", http=http, cache_discovery=False)

    def fetch(self, credential: str, since: datetime) -> List[NormalizedMessage]:
        if not credential:
            raise FetchError(self.provider, "No refresh token provided")

        after = int(since.timestamp())
        logger.debug(f"Gmail query after:{after} ({since.isoformat()})")

        try:
            service = self._service(credential)
            inbox = self._fetch_label(service, after, None)
            spam = self._fetch_label(service, after, SPAM_LABEL)
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(self.provider, f"Gmail fetch failed: {e}") from e

        logger.info(f"Found {len(inbox)} emails from Gmail Inbox")
        if spam:
            logger.info(f"Found {len(spam)} emails from Gmail Spam")

        return dedupe(inbox + spam)

    def _fetch_label(self, service, after: int, label_id: Optional[str]) -> List[NormalizedMessage]:
        params = {"userId": "me", "q": f"after:{after}", "maxResults": self.max_results}
        if label_id:
            params["labelIds"] = [label_id]
            params["includeSpamTrash"] = True

        listing = service.users().messages().list(**params).execute()
        messages = []
        for ref in listing.get("messages", []):
            data = service.users().messages().get(userId="me", id=ref["id"], format="full").execute()
            parsed = parse_gmail_message(data, is_spam=label_id == SPAM_LABEL)
            if parsed:
                messages.append(parsed)
        return messages

    def get_auth_url(self, state: str) -> str:
        url, _ = self._flow(state).authorization_url(
            access_type="offline",
            prompt="consent",  # Force consent to get a refresh token
        )
        return url

    def exchange_code(self, code: str) -> Tuple[Optional[str], Optional[str]]:
        flow = self._flow()
        flow.fetch_token(code=code)
        creds = flow.credentials
        service = build("gmail", "v1", credentials=creds, cache_discovery=False)
        profile = service.users().getProfile(userId="me").execute()
        return creds.refresh_token, profile.get("emailAddress")
