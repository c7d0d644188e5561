"""
Telegram command router - onboarding and account commands.

Translates webhook updates into storage calls and replies. The router is a
thin front end: it never touches the sweep pipeline and never lets an
exception escape process_update().
"""

import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from mailcron.models import Category, Provider, Recipient
from mailcron.notifier import (
    category_emoji,
    escape_markdown,
    format_time_ago,
    truncate,
)
from .state import InvalidTransition, SessionEvent, SessionState, next_state

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10

MESSAGES = {
    "WELCOME": (
        "🎉 *Welcome to Mail Cron Bot!*\n\n"
        "I'll help you stay on top of important placement and interview emails "
        "from your Gmail and Outlook accounts.\n\n"
        "*How it works:*\n"
        "1️⃣ Connect your email accounts\n"
        "2️⃣ I'll check your inbox regularly\n"
        "3️⃣ You'll get instant Telegram notifications for:\n"
        "   • 🎓 Placement Drives\n"
        "   • 🎤 Interview Invitations\n"
        "   • 📝 Assessment Tests\n"
        "   • 🎉 Shortlist Notifications\n\n"
        "Let's get started! Which email provider would you like to connect first?"
    ),
    "CHOOSE_PROVIDER": "Which email provider would you like to connect?",
    "CONNECT_INSTRUCTIONS": (
        "📧 *Connect {provider}*\n\n"
        "Click the button below to authorize access to your {provider} account.\n\n"
        "_Note: We only request read-only access to check for new emails._"
    ),
    "CONNECTED": (
        "✅ *{provider} Connected Successfully!*\n\n"
        "Your {provider} account has been linked. I'll now monitor it for important emails.\n\n"
        "📧 Email: {email}"
    ),
    "ADD_ANOTHER": "Would you like to connect another email provider?",
    "ALREADY_CONNECTED": (
        "⚠️ Your {provider} account is already connected.\n\n"
        "Would you like to reconnect it with a different account?"
    ),
    "CONNECTION_FAILED": (
        "❌ *Connection Failed*\n\n"
        "Something went wrong while connecting your {provider} account.\n\n"
        "Error: {error}\n\n"
        "Please try again with /add command."
    ),
    "SETUP_COMPLETE": (
        "🎊 *Setup Complete!*\n\n"
        "Your email monitoring is now active. I'll notify you when important "
        "placement or interview emails arrive.\n\n"
        "*Connected accounts:*\n{accounts}\n\n"
        "*Commands:*\n"
        "/status - Check connection status\n"
        "/settings - Manage notifications\n"
        "/history - View recent important emails\n"
        "/add - Connect another email account\n"
        "/help - Show all commands"
    ),
    "STATUS": (
        "📊 *Your Status*\n\n{accounts}\n\n"
        "*Last Check:*\n{last_check}\n\n"
        "*Statistics:*\n"
        "📧 Emails notified: {email_count}\n"
        "🎯 Important emails found: {important_count}"
    ),
    "HELP": (
        "📚 *Available Commands*\n\n"
        "*Setup*\n"
        "/start - Start setup wizard\n"
        "/add - Connect a new email account\n\n"
        "*Monitoring*\n"
        "/status - Check connection status\n"
        "/history - View recent important emails\n\n"
        "*Settings*\n"
        "/settings - Manage notification preferences\n"
        "/pause - Pause notifications\n"
        "/resume - Resume notifications\n\n"
        "*Other*\n"
        "/help - Show this help message"
    ),
    "NO_ACCOUNTS": "⚠️ You don't have any email accounts connected yet.\n\nUse /start to begin setup.",
    "NOTIFICATIONS_PAUSED": "⏸️ Notifications have been paused.\n\nUse /resume to re-enable notifications.",
    "NOTIFICATIONS_RESUMED": (
        "▶️ Notifications have been resumed.\n\nYou'll now receive alerts for important emails."
    ),
    "NO_HISTORY": "📭 No important emails found yet.",
    "CANCELLED": "👍 Cancelled.",
    "OUT_OF_ORDER": "🤔 That option isn't available right now. Use /start to begin setup.",
    "ERROR": "❌ An error occurred. Please try again later.",
}

PROVIDER_CHOICE_KEYBOARD = {
    "inline_keyboard": [
        [
            {"text": "📧 Gmail", "callback_data": "connect_gmail"},
            {"text": "📧 Outlook", "callback_data": "connect_outlook"},
        ]
    ]
}

ADD_ANOTHER_KEYBOARD = {
    "inline_keyboard": [
        [
            {"text": "➕ Add Gmail", "callback_data": "connect_gmail"},
            {"text": "➕ Add Outlook", "callback_data": "connect_outlook"},
        ],
        [{"text": "✅ Done", "callback_data": "setup_done"}],
    ]
}


def reconnect_keyboard(provider: Provider) -> Dict[str, Any]:
    return {
        "inline_keyboard": [
            [
                {"text": "🔄 Reconnect", "callback_data": f"reconnect_{provider.value}"},
                {"text": "❌ Cancel", "callback_data": "cancel"},
            ]
        ]
    }


def _command_name(text: str) -> str:
    """'/start@MailCronBot payload' -> '/start'"""
    if not text.startswith("/"):
        return ""
    return text.split()[0].split("@")[0].lower()


def _account_lines(recipient: Recipient, include_missing: bool = True) -> list:
    lines = []
    for provider in Provider:
        account = recipient.account(provider)
        if account.enabled:
            lines.append(f"✅ {provider.display_name}: {account.email or 'Connected'}")
        elif include_missing:
            lines.append(f"❌ {provider.display_name}: Not connected")
    return lines


class CommandRouter:
    """Routes Telegram updates to command and callback handlers."""

    def __init__(
        self,
        db,
        client,
        base_url: str,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.commands = {
            "/start": self.handle_start,
            "/help": self.handle_help,
            "/status": self.handle_status,
            "/add": self.handle_add,
            "/settings": self.handle_settings,
            "/pause": self.handle_pause,
            "/resume": self.handle_resume,
            "/history": self.handle_history,
        }

    # ===== Entry point =====

    def process_update(self, update: Dict[str, Any]) -> None:
        """Handle one webhook update. Never raises."""
        try:
            if update.get("message"):
                self.handle_message(update["message"])
            if update.get("callback_query"):
                self.handle_callback_query(update["callback_query"])
        except Exception as e:
            logger.error(
                f"Error processing update: {e}",
                extra={"extra_data": {"updateId": update.get("update_id")}},
            )

    def handle_message(self, message: Dict[str, Any]) -> None:
        handler = self.commands.get(_command_name(message.get("text") or ""))
        if handler is None:
            return  # Ignore non-command messages

        chat_id = str(message["chat"]["id"])
        try:
            handler(chat_id, message)
        except Exception as e:
            logger.error(
                f"Error in {handler.__name__}: {e}",
                extra={"extra_data": {"chatId": chat_id}},
            )
            self._reply_safely(chat_id, MESSAGES["ERROR"])

    def handle_callback_query(self, query: Dict[str, Any]) -> None:
        chat_id = str(query["message"]["chat"]["id"])
        data = query.get("data") or ""
        try:
            self.client.answer_callback_query(query["id"])

            if data.startswith("connect_") or data.startswith("reconnect_"):
                action, _, name = data.partition("_")
                self.initiate_oauth(chat_id, Provider(name), reconnect=action == "reconnect")
            elif data == "setup_done":
                self.handle_setup_complete(chat_id)
            elif data == "cancel":
                self._transition(chat_id, SessionEvent.CANCEL)
                self.client.send_message(chat_id, MESSAGES["CANCELLED"])
            else:
                logger.warning(
                    f"Unknown callback data: {data}", extra={"extra_data": {"chatId": chat_id}}
                )
        except InvalidTransition as e:
            logger.info(f"Ignoring out-of-order callback: {e}", extra={"extra_data": {"chatId": chat_id}})
            self._reply_safely(chat_id, MESSAGES["OUT_OF_ORDER"])
        except Exception as e:
            logger.error(
                f"Error in callback handler: {e}",
                extra={"extra_data": {"chatId": chat_id, "data": data}},
            )
            self._reply_safely(chat_id, MESSAGES["ERROR"])

    # ===== Helpers =====

    def _reply_safely(self, chat_id: str, text: str) -> None:
        try:
            self.client.send_message(chat_id, text, parse_mode=None)
        except Exception as e:
            logger.error(f"Failed to send error reply: {e}", extra={"extra_data": {"chatId": chat_id}})

    def _session_state(self, chat_id: str) -> SessionState:
        return SessionState(self.db.get_or_create_session(chat_id)["state"])

    def _transition(self, chat_id: str, event: SessionEvent, **fields: Any) -> SessionState:
        state = next_state(self._session_state(chat_id), event)
        self.db.update_session(chat_id, state=state, **fields)
        return state

    # ===== Commands =====

    def handle_start(self, chat_id: str, message: Dict[str, Any]) -> None:
        self.db.find_or_create_user(message.get("from") or {"id": chat_id})
        self._transition(chat_id, SessionEvent.START_COMMAND)
        self.client.send_message(chat_id, MESSAGES["WELCOME"], reply_markup=PROVIDER_CHOICE_KEYBOARD)

    def handle_help(self, chat_id: str, message: Dict[str, Any]) -> None:
        self.client.send_message(chat_id, MESSAGES["HELP"])

    def handle_add(self, chat_id: str, message: Dict[str, Any]) -> None:
        self.db.find_or_create_user(message.get("from") or {"id": chat_id})
        self._transition(chat_id, SessionEvent.ADD_COMMAND)
        self.client.send_message(
            chat_id, MESSAGES["CHOOSE_PROVIDER"], reply_markup=PROVIDER_CHOICE_KEYBOARD
        )

    def handle_status(self, chat_id: str, message: Dict[str, Any]) -> None:
        recipient = self.db.get_recipient(chat_id)
        if recipient is None:
            self.client.send_message(chat_id, MESSAGES["NO_ACCOUNTS"])
            return

        now = self.clock()
        last_checks = [
            f"{p.display_name}: {format_time_ago(recipient.account(p).last_checked_at, now)}"
            for p in Provider
            if recipient.account(p).last_checked_at
        ]
        text = MESSAGES["STATUS"].format(
            accounts="\n".join(_account_lines(recipient)),
            last_check="\n".join(last_checks) or "Never",
            email_count=self.db.count_user_emails(chat_id),
            important_count=self.db.count_user_emails(chat_id, important=True),
        )
        self.client.send_message(chat_id, text)

    def handle_settings(self, chat_id: str, message: Dict[str, Any]) -> None:
        recipient = self.db.get_recipient(chat_id)
        if recipient is None:
            self.client.send_message(chat_id, MESSAGES["NO_ACCOUNTS"])
            return

        enabled = recipient.notifications_enabled
        categories = "\n".join(
            f"{'✅' if recipient.category_enabled(c) else '❌'} {c.label}" for c in Category.scored()
        )
        text = (
            "⚙️ *Notification Settings*\n\n"
            f"*Status:* {'✅ Enabled' if enabled else '❌ Disabled'}\n\n"
            f"*Categories:*\n{categories}\n\n"
            "Use /pause or /resume to toggle notifications."
        )
        self.client.send_message(chat_id, text)

    def handle_pause(self, chat_id: str, message: Dict[str, Any]) -> None:
        self.db.set_notifications_enabled(chat_id, False)
        self.client.send_message(chat_id, MESSAGES["NOTIFICATIONS_PAUSED"])

    def handle_resume(self, chat_id: str, message: Dict[str, Any]) -> None:
        self.db.set_notifications_enabled(chat_id, True)
        self.client.send_message(chat_id, MESSAGES["NOTIFICATIONS_RESUMED"])

    def handle_history(self, chat_id: str, message: Dict[str, Any]) -> None:
        emails = self.db.get_user_emails(chat_id, important=True, limit=HISTORY_LIMIT)
        if not emails:
            self.client.send_message(chat_id, MESSAGES["NO_HISTORY"])
            return

        now = self.clock()
        text = "📧 *Recent Important Emails*\n\n"
        for email in emails:
            received = datetime.fromisoformat(email["received_at"]) if email["received_at"] else None
            category = Category(email["category"])
            text += f"{category_emoji(category)} *{category.label}*\n"
            text += f"📌 {escape_markdown(truncate(email['subject'], 50))}\n"
            text += f"👤 {escape_markdown(truncate(email['sender'], 30))}\n"
            text += f"🕐 {format_time_ago(received, now)}\n\n"
        self.client.send_message(chat_id, text)

    # ===== OAuth flow =====

    def initiate_oauth(self, chat_id: str, provider: Provider, reconnect: bool = False) -> None:
        recipient = self.db.get_recipient(chat_id)
        if not reconnect and recipient and recipient.account(provider).enabled:
            self.client.send_message(
                chat_id,
                MESSAGES["ALREADY_CONNECTED"].format(provider=provider.display_name),
                reply_markup=reconnect_keyboard(provider),
            )
            return

        event = SessionEvent.CHOOSE_GMAIL if provider is Provider.GMAIL else SessionEvent.CHOOSE_OUTLOOK
        oauth_state = secrets.token_hex(16)
        self._transition(chat_id, event, oauth_state=oauth_state, oauth_provider=provider.value)

        auth_url = f"{self.base_url}/oauth/{provider.value}/start?state={oauth_state}"
        self.client.send_message(
            chat_id,
            MESSAGES["CONNECT_INSTRUCTIONS"].format(provider=provider.display_name),
            reply_markup={
                "inline_keyboard": [[{"text": f"🔐 Authorize {provider.display_name}", "url": auth_url}]]
            },
        )

    def handle_oauth_success(self, chat_id: str, provider: Provider, email: Optional[str]) -> None:
        try:
            self._transition(chat_id, SessionEvent.AUTH_SUCCEEDED, oauth_state=None)
        except InvalidTransition as e:
            logger.warning(f"OAuth success outside an auth step: {e}", extra={"extra_data": {"chatId": chat_id}})
            self.db.update_session(chat_id, oauth_state=None)

        self.client.send_message(
            chat_id,
            MESSAGES["CONNECTED"].format(
                provider=provider.display_name, email=escape_markdown(email or "Unknown")
            ),
        )
        self.client.send_message(chat_id, MESSAGES["ADD_ANOTHER"], reply_markup=ADD_ANOTHER_KEYBOARD)
        logger.info(
            "OAuth success handled",
            extra={"extra_data": {"chatId": chat_id, "provider": provider.value}},
        )

    def handle_oauth_failure(self, chat_id: str, provider: Provider, error: str) -> None:
        try:
            self._transition(chat_id, SessionEvent.AUTH_FAILED, oauth_state=None)
        except InvalidTransition as e:
            logger.warning(f"OAuth failure outside an auth step: {e}", extra={"extra_data": {"chatId": chat_id}})

        self.client.send_message(
            chat_id,
            MESSAGES["CONNECTION_FAILED"].format(
                provider=provider.display_name, error=escape_markdown(truncate(error, 200))
            ),
        )

    def handle_setup_complete(self, chat_id: str) -> None:
        self._transition(chat_id, SessionEvent.SETUP_DONE)
        recipient = self.db.get_recipient(chat_id)
        accounts = _account_lines(recipient, include_missing=False) if recipient else []
        if not accounts:
            accounts = ["⚠️ No accounts connected"]
        self.client.send_message(chat_id, MESSAGES["SETUP_COMPLETE"].format(accounts="\n".join(accounts)))
