"""
Telegram delivery for Mail Cron.

TelegramClient is a thin Bot API wrapper (retries, timeout, rate limit).
TelegramNotifier formats the two user-visible notices and reports whether
delivery was confirmed; it never raises.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import requests

from mailcron.models import Category, ClassificationResult, NormalizedMessage, Provider
from mailcron.resilience import APIRateLimiters, RateLimiter, RetryError, retry_with_backoff

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org/bot{token}/{method}"
DISPLAY_TZ = ZoneInfo("Asia/Kolkata")

CATEGORY_EMOJI = {
    Category.PLACEMENT_DRIVE: "🎓",
    Category.INTERVIEW: "🎤",
    Category.ASSESSMENT: "📝",
    Category.SHORTLISTED: "🎉",
    Category.OTHER: "📧",
}


class DeliveryError(Exception):
    """Telegram rejected or never acknowledged a request."""


class TransientDeliveryError(DeliveryError):
    """Rate limited or server-side failure; worth retrying."""


class TelegramClient:
    """Minimal Telegram Bot API client over requests."""

    def __init__(
        self,
        token: str,
        timeout: float = 10,
        max_retries: int = 2,
        base_delay: float = 1.0,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.token = token
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.session = session or requests.Session()
        self.rate_limiter = rate_limiter or APIRateLimiters.telegram

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def call(self, method: str, **payload: Any) -> Any:
        """
        POST a Bot API method and return its ``result``.

        Raises:
            DeliveryError: When the token is missing, Telegram answers
                ok=false, or retries are exhausted
        """
        if not self.token:
            raise DeliveryError("Telegram bot token is not configured")

        url = TELEGRAM_API_BASE.format(token=self.token, method=method)
        body = {k: v for k, v in payload.items() if v is not None}

        @retry_with_backoff(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            max_delay=10.0,
            retryable_exceptions=(requests.RequestException, TransientDeliveryError),
        )
        def post():
            if not self.rate_limiter.acquire(timeout=self.timeout):
                raise TransientDeliveryError("Telegram rate limiter timed out")

            response = self.session.post(url, json=body, timeout=self.timeout)
            if response.status_code == 429 or response.status_code >= 500:
                raise TransientDeliveryError(f"Telegram {method} returned HTTP {response.status_code}")

            try:
                data = response.json()
            except ValueError as e:
                raise DeliveryError(f"Telegram {method} returned invalid JSON") from e

            if not data.get("ok"):
                raise DeliveryError(f"Telegram {method} failed: {data.get('description', 'unknown error')}")
            return data.get("result")

        try:
            return post()
        except RetryError as e:
            raise DeliveryError(str(e)) from e

    def send_message(
        self,
        chat_id: Any,
        text: str,
        parse_mode: Optional[str] = "Markdown",
        disable_web_page_preview: bool = True,
        reply_markup: Optional[Dict[str, Any]] = None,
    ) -> Any:
        return self.call(
            "sendMessage",
            chat_id=str(chat_id),
            text=text,
            parse_mode=parse_mode,
            disable_web_page_preview=disable_web_page_preview,
            reply_markup=reply_markup,
        )

    def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> Any:
        return self.call("answerCallbackQuery", callback_query_id=callback_query_id, text=text)

    def set_webhook(self, url: str, drop_pending_updates: bool = True) -> Any:
        result = self.call("setWebhook", url=url, drop_pending_updates=drop_pending_updates)
        logger.info(f"Webhook set: {url}")
        return result

    def delete_webhook(self) -> Any:
        result = self.call("deleteWebhook")
        logger.info("Webhook deleted")
        return result

    def get_webhook_info(self) -> Any:
        return self.call("getWebhookInfo")


# ===== Formatting helpers =====


def escape_markdown(text: Optional[str]) -> str:
    """Escape the characters legacy Telegram Markdown treats as markup."""
    if not text:
        return ""
    for char in ("\\", "*", "_", "[", "]", "`"):
        text = text.replace(char, "\\" + char)
    return text


def truncate(text: Optional[str], max_length: int) -> str:
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def category_emoji(category: Category) -> str:
    try:
        return CATEGORY_EMOJI[Category(category)]
    except ValueError:
        return "📧"


def format_date(value: Optional[datetime]) -> str:
    """Format a timestamp for display, e.g. '15 Jan 2024, 04:00 PM'."""
    if value is None:
        return "Unknown"
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(DISPLAY_TZ).strftime("%d %b %Y, %I:%M %p").lstrip("0")


def format_time_ago(value: Optional[datetime], now: Optional[datetime] = None) -> str:
    if value is None:
        return "Never"
    now = now or datetime.now(timezone.utc)
    seconds = int((now - value).total_seconds())
    if seconds < 60:
        return "Just now"
    if seconds < 3600:
        return f"{seconds // 60} min ago"
    if seconds < 86400:
        return f"{seconds // 3600} hours ago"
    return f"{seconds // 86400} days ago"


def format_important_message(message: NormalizedMessage, classification: ClassificationResult) -> str:
    lines = [
        f"{category_emoji(classification.category)} *{classification.category.label}*",
        "",
        f"📧 *Subject:* {escape_markdown(message.subject)}",
        "",
        f"👤 *From:* {escape_markdown(truncate(message.sender, 50))}",
        "",
        f"🕐 *Time:* {format_date(message.received_at)}",
        "",
        "📝 *Preview:*",
        escape_markdown(truncate(message.snippet, 200)),
        "",
    ]
    if message.is_spam:
        lines += ["⚠️ _Found in your spam folder_", ""]
    lines += [
        f"🔗 [Open Email]({message.web_link})",
        "",
        f"_Confidence: {round(classification.confidence * 100)}%_",
    ]
    return "\n".join(lines)


def format_failure_message(provider: Provider, error_text: str = "") -> str:
    name = Provider(provider).display_name
    parts = [
        "⚠️ *Mail Fetch Failing*",
        "",
        f"The {name} mail fetch is encountering errors. Please check your connection.",
        "",
    ]
    if error_text:
        parts += [f"_Error: {escape_markdown(truncate(error_text, 100))}_", ""]
    parts += [
        f"Use /add to reconnect your {name} account.",
        "",
        "_This alert won't repeat for 2 hours._",
    ]
    return "\n".join(parts)


def _chat_id(recipient: Any) -> str:
    return str(getattr(recipient, "chat_id", recipient))


class TelegramNotifier:
    """Delivers notices to a recipient; True only on confirmed delivery."""

    def __init__(self, client: TelegramClient):
        self.client = client

    def notify_important(
        self, recipient: Any, message: NormalizedMessage, classification: ClassificationResult
    ) -> bool:
        chat_id = _chat_id(recipient)
        try:
            self.client.send_message(chat_id, format_important_message(message, classification))
        except Exception as e:
            logger.error(
                f"Failed to send email notification: {e}",
                extra={"extra_data": {"chatId": chat_id, "uniqueId": message.unique_id}},
            )
            return False

        logger.info(
            "Email notification sent",
            extra={
                "extra_data": {
                    "chatId": chat_id,
                    "uniqueId": message.unique_id,
                    "category": classification.category.value,
                }
            },
        )
        return True

    def notify_failure(self, recipient: Any, provider: Provider, error_text: str = "") -> bool:
        chat_id = _chat_id(recipient)
        try:
            self.client.send_message(chat_id, format_failure_message(provider, error_text))
        except Exception as e:
            logger.error(
                f"Failed to send failure alert: {e}",
                extra={"extra_data": {"chatId": chat_id, "provider": Provider(provider).value}},
            )
            return False
        return True
