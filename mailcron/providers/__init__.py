"""
Providers Package - mailbox fetch adapters

Usage:
    from mailcron.providers import build_fetchers

    fetchers = build_fetchers(config)
    messages = fetchers[Provider.GMAIL].fetch(refresh_token, since)
"""

from typing import Dict

from mailcron.models import Provider
from .base import FetchAdapter, FetchError, html_to_text
from .gmail import GmailAdapter, parse_gmail_message
from .outlook import OutlookAdapter, parse_outlook_message


def build_fetchers(config) -> Dict[Provider, FetchAdapter]:
    """Build one adapter per supported provider from a Config."""
    return {
        Provider.GMAIL: GmailAdapter(
            client_id=config.gmail_client_id,
            client_secret=config.gmail_client_secret,
            redirect_uri=config.oauth_redirect_uri(Provider.GMAIL.value),
            max_results=config.fetch_max_results,
            timeout=config.fetch_timeout,
        ),
        Provider.OUTLOOK: OutlookAdapter(
            client_id=config.outlook_client_id,
            client_secret=config.outlook_client_secret,
            redirect_uri=config.oauth_redirect_uri(Provider.OUTLOOK.value),
            tenant_id=config.outlook_tenant_id,
            max_results=config.fetch_max_results,
            timeout=config.fetch_timeout,
        ),
    }


__all__ = [
    "FetchAdapter",
    "FetchError",
    "GmailAdapter",
    "OutlookAdapter",
    "build_fetchers",
    "html_to_text",
    "parse_gmail_message",
    "parse_outlook_message",
]
