"""
Outlook Adapter - Microsoft Graph authentication and message fetching

Uses the refresh-token grant against the Microsoft identity platform and
reads the inbox and junk folders through the Graph REST API.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from urllib.parse import urlencode

import requests

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

GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"
LOGIN_BASE = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0"

AUTH_SCOPES = (
    "https://graph.microsoft.com/Mail.Read https://graph.microsoft.com/User.Read offline_access"
)
REFRESH_SCOPES = "https://graph.microsoft.com/Mail.Read offline_access"

FOLDERS = (("inbox", False), ("junkemail", True))
SELECT_FIELDS = (
    "id,subject,from,toRecipients,receivedDateTime,bodyPreview,body,webLink,isRead,conversationId"
)
WEB_LINK = "https://outlook.office.com/mail/inbox/id/{message_id}"
UNKNOWN_SENDER = "Unknown Sender"


def _parse_timestamp(value: str) -> datetime:
    # Graph returns e.g. 2024-01-15T10:30:00Z
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _format_sender(message: dict) -> str:
    address = (message.get("from") or {}).get("emailAddress")
    if not address:
        return UNKNOWN_SENDER
    return f"{address.get('name') or ''} <{address.get('address')}>".strip()


def parse_outlook_message(message: dict, is_spam: bool = False) -> Optional[NormalizedMessage]:
    """
    Parse a Graph API message resource into a NormalizedMessage.

    Returns None when the resource is missing required fields.
    """
    try:
        message_id = message["id"]
        to = ", ".join(
            r["emailAddress"]["address"]
            for r in message.get("toRecipients") or []
            if (r.get("emailAddress") or {}).get("address")
        )

        preview = message.get("bodyPreview") or ""
        body = preview
        content = (message.get("body") or {}).get("content")
        if content:
            if (message["body"].get("contentType") or "").lower() == "html":
                body = html_to_text(content)
            else:
                body = content

        return NormalizedMessage(
            provider=Provider.OUTLOOK,
            message_id=message_id,
            thread_id=message.get("conversationId"),
            subject=message.get("subject") or NO_SUBJECT,
            sender=_format_sender(message),
            to=to,
            received_at=_parse_timestamp(message["receivedDateTime"]),
            snippet=truncate(preview, SNIPPET_MAX_CHARS),
            body=truncate(body, BODY_MAX_CHARS),
            web_link=message.get("webLink") or WEB_LINK.format(message_id=message_id),
            is_spam=is_spam,
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Failed to parse Outlook message {message.get('id')}: {e}")
        return None


class OutlookAdapter(FetchAdapter):
    """Outlook / Microsoft 365 fetch adapter over Microsoft Graph."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        tenant_id: str = "common",
        max_results: int = 50,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.tenant_id = tenant_id or "common"
        self.max_results = max_results
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def provider(self) -> Provider:
        return Provider.OUTLOOK

    @property
    def token_endpoint(self) -> str:
        return f"{LOGIN_BASE.format(tenant=self.tenant_id)}/token"

    @property
    def authorize_endpoint(self) -> str:
        return f"{LOGIN_BASE.format(tenant=self.tenant_id)}/authorize"

    def _post_token(self, data: dict) -> dict:
        response = self.session.post(self.token_endpoint, data=data, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def get_access_token(self, refresh_token: str) -> str:
        if not refresh_token:
            raise FetchError(self.provider, "No refresh token provided")
        payload = self._post_token(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
                "scope": REFRESH_SCOPES,
            }
        )
        return payload["access_token"]

    def fetch(self, credential: str, since: datetime) -> List[NormalizedMessage]:
        since_iso = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        query = f"receivedDateTime ge {since_iso}"
        logger.debug(f"Outlook query: {query}")

        try:
            token = self.get_access_token(credential)
            messages = []
            for folder, is_spam in FOLDERS:
                found = self._fetch_folder(token, folder, query, is_spam)
                if found:
                    logger.info(f"Found {len(found)} emails from Outlook {folder}")
                messages.extend(found)
        except FetchError:
            raise
        except (requests.RequestException, KeyError, ValueError) as e:
            raise FetchError(self.provider, f"Outlook fetch failed: {e}") from e

        return dedupe(messages)

    def _fetch_folder(self, token: str, folder: str, query: str, is_spam: bool) -> List[NormalizedMessage]:
        response = self.session.get(
            f"{GRAPH_API_BASE}/me/mailFolders/{folder}/messages",
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            params={
                "$filter": query,
                "$top": self.max_results,
                "$orderby": "receivedDateTime desc",
                "$select": SELECT_FIELDS,
            },
            timeout=self.timeout,
        )
        response.raise_for_status()

        parsed = (parse_outlook_message(m, is_spam=is_spam) for m in response.json().get("value", []))
        return [m for m in parsed if m]

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": AUTH_SCOPES,
            "response_mode": "query",
            "state": state,
        }
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    def exchange_code(self, code: str) -> Tuple[Optional[str], Optional[str]]:
        tokens = self._post_token(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            }
        )
        response = self.session.get(
            f"{GRAPH_API_BASE}/me",
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        user = response.json()
        return tokens.get("refresh_token"), user.get("mail") or user.get("userPrincipalName")
