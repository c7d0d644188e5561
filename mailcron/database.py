"""
Database - SQLite storage for recipients, checkpoints, the notification ledger
and onboarding sessions.

Every write that the sweep depends on is keyed (recipient + provider, or
recipient + unique id) so a retried or duplicated sweep is safe to replay.
Timestamps are stored as ISO-8601 UTC strings.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from mailcron.models import (
    Category,
    ClassificationResult,
    NormalizedMessage,
    Provider,
    ProviderAccount,
    Recipient,
)

logger = logging.getLogger(__name__)

SESSION_TTL = timedelta(hours=24)
# A delivery claim older than this is treated as abandoned by a crashed sweep
CLAIM_TTL = timedelta(minutes=10)
DEFAULT_HISTORY_LIMIT = 50
MEMORY = ":memory:"

EMAIL_COLUMNS = (
    "chat_id, unique_id, provider, message_id, thread_id, subject, sender, recipient, "
    "snippet, body, web_link, is_spam, received_at, important, category, confidence, "
    "reason, method"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _chat(chat_id: Any) -> str:
    return str(chat_id)


class Database:
    """
    SQLite-backed storage collaborator.

    A file database opens one connection per operation (WAL mode lets
    readers proceed during writes). ``:memory:`` keeps a single shared
    connection so tests see one database.
    """

    def __init__(self, path: str):
        self.path = str(path)
        self._lock = threading.RLock()
        self._shared: Optional[sqlite3.Connection] = None
        if self.path == MEMORY:
            self._shared = sqlite3.connect(MEMORY, check_same_thread=False)
            self._shared.row_factory = sqlite3.Row
        self.init_db()

    @contextmanager
    def connect(self):
        """Yield a connection with Row factory; commits on success."""
        if self._shared is not None:
            with self._lock:
                try:
                    yield self._shared
                    self._shared.commit()
                except Exception:
                    self._shared.rollback()
                    raise
            return

        conn = sqlite3.connect(self.path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def close(self) -> None:
        if self._shared is not None:
            self._shared.close()
            self._shared = None

    def init_db(self) -> None:
        """
        Create tables if they don't exist.

        Creates tables for:
        - users: Telegram recipients and their notification settings
        - provider_accounts: Per-provider credentials, checkpoint and alert state
        - emails: Notification ledger and classified email history
        - sessions: Onboarding conversation state and OAuth CSRF tokens
        """
        with self.connect() as conn:
            if self._shared is None:
                conn.execute("PRAGMA journal_mode=WAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    chat_id TEXT PRIMARY KEY,
                    username TEXT,
                    first_name TEXT DEFAULT 'User',
                    last_name TEXT,
                    notifications_enabled INTEGER DEFAULT 1,
                    categories TEXT,
                    is_active INTEGER DEFAULT 1,
                    created_at TEXT,
                    updated_at TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS provider_accounts (
                    chat_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    enabled INTEGER DEFAULT 0,
                    refresh_token TEXT,
                    email TEXT,
                    connected_at TEXT,
                    last_error TEXT,
                    last_error_at TEXT,
                    last_checked_at TEXT,
                    last_failure_alert_at TEXT,
                    PRIMARY KEY (chat_id, provider),
                    FOREIGN KEY (chat_id) REFERENCES users(chat_id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS emails (
                    chat_id TEXT NOT NULL,
                    unique_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    thread_id TEXT,
                    subject TEXT,
                    sender TEXT,
                    recipient TEXT,
                    snippet TEXT,
                    body TEXT,
                    web_link TEXT,
                    is_spam INTEGER DEFAULT 0,
                    received_at TEXT,
                    important INTEGER DEFAULT 0,
                    category TEXT DEFAULT 'OTHER',
                    confidence REAL DEFAULT 0,
                    reason TEXT,
                    method TEXT,
                    notified INTEGER DEFAULT 0,
                    notified_at TEXT,
                    claimed_at TEXT,
                    created_at TEXT,
                    PRIMARY KEY (chat_id, unique_id)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_emails_received ON emails (chat_id, received_at)"
            )

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    chat_id TEXT PRIMARY KEY,
                    state TEXT DEFAULT 'START',
                    oauth_state TEXT,
                    oauth_provider TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    expires_at TEXT
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sessions_oauth ON sessions (oauth_state)"
            )

            self._run_migrations(conn)

    def _run_migrations(self, conn: sqlite3.Connection) -> None:
        """Add columns that older database files are missing."""
        email_columns = {row[1] for row in conn.execute("PRAGMA table_info(emails)").fetchall()}
        if "claimed_at" not in email_columns:
            logger.info("Migrating database: adding 'claimed_at' column to emails...")
            conn.execute("ALTER TABLE emails ADD COLUMN claimed_at TEXT")

    # ==================== USER OPERATIONS ====================

    def find_or_create_user(self, telegram_user: Dict[str, Any]) -> Recipient:
        """Find or create a user from a Telegram ``from`` object."""
        chat_id = _chat(telegram_user["id"])
        now = _iso(_utcnow())
        with self.connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO users
                    (chat_id, username, first_name, last_name, categories, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    chat_id,
                    telegram_user.get("username"),
                    telegram_user.get("first_name") or "User",
                    telegram_user.get("last_name"),
                    json.dumps({c.value: True for c in Category.scored()}),
                    now,
                    now,
                ),
            )
            if cursor.rowcount:
                logger.info(
                    "New user created",
                    extra={"extra_data": {"chatId": chat_id, "username": telegram_user.get("username")}},
                )
        return self.get_recipient(chat_id)

    def get_recipient(self, chat_id: Any) -> Optional[Recipient]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE chat_id = ?", (_chat(chat_id),)).fetchone()
            if row is None:
                return None
            accounts = conn.execute(
                "SELECT * FROM provider_accounts WHERE chat_id = ?", (_chat(chat_id),)
            ).fetchall()
        return self._to_recipient(row, accounts)

    def list_active_recipients(self) -> List[Recipient]:
        """Active users with notifications on and at least one enabled provider."""
        with self.connect() as conn:
            rows = conn.execute("""
                SELECT u.* FROM users u
                WHERE u.is_active = 1
                  AND u.notifications_enabled = 1
                  AND EXISTS (
                      SELECT 1 FROM provider_accounts p
                      WHERE p.chat_id = u.chat_id
                        AND p.enabled = 1
                        AND p.refresh_token IS NOT NULL
                  )
                ORDER BY u.created_at
            """).fetchall()
            accounts = conn.execute("SELECT * FROM provider_accounts").fetchall()

        by_chat: Dict[str, List[sqlite3.Row]] = {}
        for account in accounts:
            by_chat.setdefault(account["chat_id"], []).append(account)
        return [self._to_recipient(row, by_chat.get(row["chat_id"], [])) for row in rows]

    def _to_recipient(self, row: sqlite3.Row, account_rows: List[sqlite3.Row]) -> Recipient:
        stored = json.loads(row["categories"]) if row["categories"] else {}
        categories = {c: bool(stored.get(c.value, True)) for c in Category.scored()}

        accounts = {}
        for a in account_rows:
            provider = Provider(a["provider"])
            accounts[provider] = ProviderAccount(
                provider=provider,
                enabled=bool(a["enabled"]),
                refresh_token=a["refresh_token"],
                email=a["email"],
                connected_at=_parse(a["connected_at"]),
                last_error=a["last_error"],
                last_error_at=_parse(a["last_error_at"]),
                last_checked_at=_parse(a["last_checked_at"]),
                last_failure_alert_at=_parse(a["last_failure_alert_at"]),
            )

        return Recipient(
            chat_id=row["chat_id"],
            first_name=row["first_name"] or "User",
            last_name=row["last_name"],
            username=row["username"],
            notifications_enabled=bool(row["notifications_enabled"]),
            categories=categories,
            is_active=bool(row["is_active"]),
            accounts=accounts,
        )

    def _ensure_account(self, conn: sqlite3.Connection, chat_id: str, provider: Provider) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO provider_accounts (chat_id, provider) VALUES (?, ?)",
            (chat_id, Provider(provider).value),
        )

    def update_provider_credentials(
        self,
        chat_id: Any,
        provider: Provider,
        refresh_token: str,
        email: Optional[str] = None,
        when: Optional[datetime] = None,
    ) -> Optional[Recipient]:
        """Store a freshly issued refresh token and clear any recorded error."""
        chat_id = _chat(chat_id)
        with self.connect() as conn:
            self._ensure_account(conn, chat_id, provider)
            conn.execute(
                """
                UPDATE provider_accounts
                SET enabled = 1, refresh_token = ?, email = ?, connected_at = ?,
                    last_error = NULL, last_error_at = NULL
                WHERE chat_id = ? AND provider = ?
                """,
                (refresh_token, email, _iso(when or _utcnow()), chat_id, Provider(provider).value),
            )
        logger.info(
            "Provider credentials updated",
            extra={"extra_data": {"chatId": chat_id, "provider": Provider(provider).value}},
        )
        return self.get_recipient(chat_id)

    def record_provider_error(
        self, chat_id: Any, provider: Provider, error: str, when: Optional[datetime] = None
    ) -> None:
        chat_id = _chat(chat_id)
        with self.connect() as conn:
            self._ensure_account(conn, chat_id, provider)
            conn.execute(
                """
                UPDATE provider_accounts SET last_error = ?, last_error_at = ?
                WHERE chat_id = ? AND provider = ?
                """,
                (error, _iso(when or _utcnow()), chat_id, Provider(provider).value),
            )

    def set_notifications_enabled(self, chat_id: Any, enabled: bool) -> None:
        with self.connect() as conn:
            conn.execute(
                "UPDATE users SET notifications_enabled = ?, updated_at = ? WHERE chat_id = ?",
                (int(enabled), _iso(_utcnow()), _chat(chat_id)),
            )

    def set_category_enabled(self, chat_id: Any, category: Category, enabled: bool) -> None:
        recipient = self.get_recipient(chat_id)
        if recipient is None:
            return
        categories = {c.value: v for c, v in recipient.categories.items()}
        categories[Category(category).value] = bool(enabled)
        with self.connect() as conn:
            conn.execute(
                "UPDATE users SET categories = ?, updated_at = ? WHERE chat_id = ?",
                (json.dumps(categories), _iso(_utcnow()), _chat(chat_id)),
            )

    # ==================== CHECKPOINT / FAILURE ALERTS ====================

    def _account_field(self, chat_id: Any, provider: Provider, column: str) -> Optional[datetime]:
        with self.connect() as conn:
            row = conn.execute(
                f"SELECT {column} FROM provider_accounts WHERE chat_id = ? AND provider = ?",
                (_chat(chat_id), Provider(provider).value),
            ).fetchone()
        return _parse(row[column]) if row else None

    def _set_account_field(self, chat_id: Any, provider: Provider, column: str, when: datetime) -> None:
        chat_id = _chat(chat_id)
        with self.connect() as conn:
            self._ensure_account(conn, chat_id, provider)
            conn.execute(
                f"UPDATE provider_accounts SET {column} = ? WHERE chat_id = ? AND provider = ?",
                (_iso(when), chat_id, Provider(provider).value),
            )

    def get_checkpoint(self, chat_id: Any, provider: Provider) -> Optional[datetime]:
        return self._account_field(chat_id, provider, "last_checked_at")

    def set_checkpoint(self, chat_id: Any, provider: Provider, when: datetime) -> None:
        self._set_account_field(chat_id, provider, "last_checked_at", when)

    def can_send_failure_alert(
        self, chat_id: Any, provider: Provider, now: datetime, cooldown: timedelta
    ) -> bool:
        """True when no alert was ever sent, or the cooldown has elapsed."""
        with self.connect() as conn:
            user = conn.execute(
                "SELECT 1 FROM users WHERE chat_id = ?", (_chat(chat_id),)
            ).fetchone()
        if user is None:
            return False
        last_alert = self._account_field(chat_id, provider, "last_failure_alert_at")
        if last_alert is None:
            return True
        return now - last_alert >= cooldown

    def record_failure_alert(self, chat_id: Any, provider: Provider, when: datetime) -> None:
        self._set_account_field(chat_id, provider, "last_failure_alert_at", when)

    # ==================== NOTIFICATION LEDGER ====================

    def is_notified(self, chat_id: Any, provider: Provider, message_id: str) -> bool:
        with self.connect() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM emails
                WHERE chat_id = ? AND provider = ? AND message_id = ? AND notified = 1
                """,
                (_chat(chat_id), Provider(provider).value, message_id),
            ).fetchone()
        return row is not None

    @staticmethod
    def _email_values(
        chat_id: str, message: NormalizedMessage, classification: ClassificationResult
    ) -> tuple:
        return (
            chat_id,
            message.unique_id,
            Provider(message.provider).value,
            message.message_id,
            message.thread_id,
            message.subject,
            message.sender,
            message.to,
            message.snippet,
            message.body,
            message.web_link,
            int(message.is_spam),
            _iso(message.received_at),
            int(classification.important),
            classification.category.value,
            classification.confidence,
            classification.reason,
            classification.method,
        )

    def claim_notification(
        self,
        chat_id: Any,
        message: NormalizedMessage,
        classification: ClassificationResult,
        when: Optional[datetime] = None,
    ) -> bool:
        """
        Reserve the right to deliver ``message`` to ``chat_id``.

        Only one caller wins the claim for a given (recipient, unique id);
        everyone else gets False until the winner records delivery or
        releases the claim. A claim left behind for longer than CLAIM_TTL
        can be taken over.

        Returns:
            True if this caller now owns delivery
        """
        chat_id = _chat(chat_id)
        now = when or _utcnow()
        with self.connect() as conn:
            cursor = conn.execute(
                f"""
                INSERT INTO emails ({EMAIL_COLUMNS}, notified, claimed_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                ON CONFLICT (chat_id, unique_id) DO UPDATE SET
                    claimed_at = excluded.claimed_at
                WHERE emails.notified = 0
                  AND (emails.claimed_at IS NULL OR emails.claimed_at < ?)
                """,
                (
                    *self._email_values(chat_id, message, classification),
                    _iso(now),
                    _iso(now),
                    _iso(now - CLAIM_TTL),
                ),
            )
            claimed = cursor.rowcount == 1

        if not claimed:
            logger.debug(
                "Delivery already claimed",
                extra={"extra_data": {"chatId": chat_id, "uniqueId": message.unique_id}},
            )
        return claimed

    def release_notification(self, chat_id: Any, message: NormalizedMessage) -> None:
        """Drop an undelivered claim so the next sweep can retry the message."""
        with self.connect() as conn:
            conn.execute(
                "DELETE FROM emails WHERE chat_id = ? AND unique_id = ? AND notified = 0",
                (_chat(chat_id), message.unique_id),
            )

    def upsert_notification(
        self,
        chat_id: Any,
        message: NormalizedMessage,
        classification: ClassificationResult,
        when: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Record that ``message`` was delivered to ``chat_id``.

        Message content is written once; the classification and notified
        flag are refreshed on conflict, so there is never more than one row
        per (recipient, unique id).
        """
        chat_id = _chat(chat_id)
        now = _iso(when or _utcnow())
        with self.connect() as conn:
            conn.execute(
                f"""
                INSERT INTO emails ({EMAIL_COLUMNS}, notified, notified_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                ON CONFLICT (chat_id, unique_id) DO UPDATE SET
                    important = excluded.important,
                    category = excluded.category,
                    confidence = excluded.confidence,
                    reason = excluded.reason,
                    method = excluded.method,
                    notified = 1,
                    notified_at = excluded.notified_at,
                    claimed_at = NULL
                """,
                (*self._email_values(chat_id, message, classification), now, now),
            )
            row = conn.execute(
                "SELECT * FROM emails WHERE chat_id = ? AND unique_id = ?",
                (chat_id, message.unique_id),
            ).fetchone()
        return dict(row)

    def get_user_emails(
        self,
        chat_id: Any,
        important: Optional[bool] = None,
        category: Optional[Category] = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> List[Dict[str, Any]]:
        """Delivered email history for a user, newest first."""
        query = "SELECT * FROM emails WHERE chat_id = ? AND notified = 1"
        params: List[Any] = [_chat(chat_id)]
        if important is not None:
            query += " AND important = ?"
            params.append(int(important))
        if category is not None:
            query += " AND category = ?"
            params.append(Category(category).value)
        query += " ORDER BY received_at DESC LIMIT ?"
        params.append(limit)

        with self.connect() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    def count_user_emails(self, chat_id: Any, important: Optional[bool] = None) -> int:
        query = "SELECT COUNT(*) FROM emails WHERE chat_id = ? AND notified = 1"
        params: List[Any] = [_chat(chat_id)]
        if important is not None:
            query += " AND important = ?"
            params.append(int(important))
        with self.connect() as conn:
            return conn.execute(query, params).fetchone()[0]

    # ==================== SESSION OPERATIONS ====================

    def get_or_create_session(self, chat_id: Any) -> Dict[str, Any]:
        chat_id = _chat(chat_id)
        now = _utcnow()
        with self.connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO sessions (chat_id, state, created_at, updated_at, expires_at)
                VALUES (?, 'START', ?, ?, ?)
                """,
                (chat_id, _iso(now), _iso(now), _iso(now + SESSION_TTL)),
            )
            row = conn.execute("SELECT * FROM sessions WHERE chat_id = ?", (chat_id,)).fetchone()
        return dict(row)

    def update_session(self, chat_id: Any, **updates: Any) -> Dict[str, Any]:
        """Apply ``updates`` (state, oauth_state, oauth_provider) and extend expiry."""
        allowed = {"state", "oauth_state", "oauth_provider"}
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Unknown session fields: {', '.join(sorted(unknown))}")

        self.get_or_create_session(chat_id)
        now = _utcnow()
        values = {k: getattr(v, "value", v) for k, v in updates.items()}
        values.update(updated_at=_iso(now), expires_at=_iso(now + SESSION_TTL))
        assignments = ", ".join(f"{column} = ?" for column in values)

        with self.connect() as conn:
            conn.execute(
                f"UPDATE sessions SET {assignments} WHERE chat_id = ?",
                (*values.values(), _chat(chat_id)),
            )
            row = conn.execute(
                "SELECT * FROM sessions WHERE chat_id = ?", (_chat(chat_id),)
            ).fetchone()
        return dict(row)

    def get_session_by_oauth_state(
        self, oauth_state: str, now: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        """Look up an unexpired session by its OAuth CSRF token."""
        if not oauth_state:
            return None
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE oauth_state = ?", (oauth_state,)
            ).fetchone()
        if row is None:
            return None
        expires_at = _parse(row["expires_at"])
        if expires_at and expires_at < (now or _utcnow()):
            return None
        return dict(row)

    def clear_session(self, chat_id: Any) -> None:
        with self.connect() as conn:
            conn.execute("DELETE FROM sessions WHERE chat_id = ?", (_chat(chat_id),))

    # ==================== STATS ====================

    def get_stats(self) -> Dict[str, int]:
        with self.connect() as conn:
            users = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            emails = conn.execute("SELECT COUNT(*) FROM emails WHERE notified = 1").fetchone()[0]
            important = conn.execute(
                "SELECT COUNT(*) FROM emails WHERE notified = 1 AND important = 1"
            ).fetchone()[0]
        return {
            "users": users,
            "activeUsers": len(self.list_active_recipients()),
            "emails": emails,
            "importantEmails": important,
        }
