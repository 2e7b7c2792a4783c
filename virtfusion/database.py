"""SQLite-backed host platform records: settings, orders, and panel accounts."""
from __future__ import annotations

import base64
import hashlib
import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from cryptography.fernet import Fernet, InvalidToken

from .errors import ConfigurationError
from .models import ExternalUser, HostUser, Order, Package, QueuedEmail
from .notifications import EmailMessage

ENCRYPTED_PREFIX = "encrypted::"


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "virtfusion.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _dump_json(value: Optional[Mapping[str, Any]]) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(dict(value), sort_keys=True)


def _load_json(value: Optional[str]) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    loaded = json.loads(value)
    return loaded if isinstance(loaded, dict) else None


class Database:
    """Simple wrapper around SQLite standing in for the host platform's storage."""

    def __init__(self, path: Path, *, secret: Optional[str] = None) -> None:
        _ensure_directory(path)
        self._path = path
        if secret is None:
            secret = os.getenv("VIRTFUSION_SECRET")
        self._cipher = self._build_cipher(secret)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS packages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    config TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS orders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    package_id INTEGER NOT NULL REFERENCES packages(id),
                    external_id TEXT,
                    data TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS external_users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
                    order_id INTEGER REFERENCES orders(id) ON DELETE SET NULL,
                    external_id TEXT NOT NULL,
                    username TEXT NOT NULL,
                    password_encrypted TEXT,
                    data TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS email_outbox (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    subject TEXT NOT NULL,
                    content TEXT NOT NULL,
                    button_name TEXT,
                    button_url TEXT,
                    created_at TEXT NOT NULL,
                    sent_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_orders_user_id ON orders(user_id);
                CREATE INDEX IF NOT EXISTS idx_email_outbox_pending ON email_outbox(sent_at);
                """
            )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if row is None or row["value"] is None:
            return default
        if key.startswith(ENCRYPTED_PREFIX):
            return self._decrypt(str(row["value"]))
        return str(row["value"])

    def set_setting(self, key: str, value: Optional[str]) -> None:
        stored = value
        if value is not None and key.startswith(ENCRYPTED_PREFIX):
            stored = self._encrypt(value)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, stored, _serialize_datetime(_current_timestamp())),
            )

    def set_settings(self, values: Mapping[str, Optional[str]]) -> None:
        """Store several settings; nothing is written when an encrypted value cannot be stored."""

        if any(value is not None and key.startswith(ENCRYPTED_PREFIX) for key, value in values.items()):
            self._require_cipher()
        for key, value in values.items():
            self.set_setting(key, value)

    # ------------------------------------------------------------------
    # Users and packages
    # ------------------------------------------------------------------
    def create_user(self, first_name: str, last_name: str, email: str) -> HostUser:
        normalized_email = email.strip().lower()
        if not normalized_email:
            raise ValueError("Email must not be empty")

        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO users (first_name, last_name, email, created_at) VALUES (?, ?, ?, ?)",
                    (
                        first_name.strip(),
                        last_name.strip(),
                        normalized_email,
                        _serialize_datetime(_current_timestamp()),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("A user with that email already exists") from exc
            user_id = cursor.lastrowid

        return HostUser(id=user_id, first_name=first_name.strip(), last_name=last_name.strip(), email=normalized_email)

    def get_user(self, user_id: int) -> Optional[HostUser]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def create_package(self, name: str, config: Optional[Mapping[str, Any]] = None) -> Package:
        cleaned = name.strip()
        if not cleaned:
            raise ValueError("Package name must not be empty")

        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO packages (name, config, created_at) VALUES (?, ?, ?)",
                (cleaned, _dump_json(config or {}), _serialize_datetime(_current_timestamp())),
            )
            package_id = cursor.lastrowid

        return Package(id=package_id, name=cleaned, config=dict(config or {}))

    def get_package(self, package_id: int) -> Optional[Package]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM packages WHERE id = ?", (package_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_package(row)

    def update_package_config(self, package_id: int, config: Mapping[str, Any]) -> Optional[Package]:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE packages SET config = ? WHERE id = ?",
                (_dump_json(config), package_id),
            )
            if cursor.rowcount == 0:
                return None
        return self.get_package(package_id)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def create_order(self, user_id: int, package_id: int) -> Order:
        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO orders (user_id, package_id, created_at) VALUES (?, ?, ?)",
                    (user_id, package_id, _serialize_datetime(_current_timestamp())),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("Unknown user or package for order") from exc
            order_id = cursor.lastrowid

        order = self.get_order(order_id)
        if order is None:
            raise RuntimeError("Failed to load order after creation")
        return order

    def get_order(self, order_id: int) -> Optional[Order]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        if row is None:
            return None

        user = self.get_user(int(row["user_id"]))
        package = self.get_package(int(row["package_id"]))
        if user is None or package is None:
            return None
        return Order(
            id=int(row["id"]),
            user=user,
            package=package,
            external_id=row["external_id"],
            data=_load_json(row["data"]),
        )

    def update_order_external(self, order_id: int, *, external_id: str, data: Mapping[str, Any]) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE orders SET external_id = ?, data = ? WHERE id = ?",
                (str(external_id), _dump_json(data), order_id),
            )
            if cursor.rowcount == 0:
                raise KeyError(f"Unknown order {order_id}")

    # ------------------------------------------------------------------
    # Panel accounts
    # ------------------------------------------------------------------
    def get_external_user(self, user_id: int) -> Optional[ExternalUser]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM external_users WHERE user_id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_external_user(row)

    def create_external_user(
        self,
        order: Order,
        *,
        external_id: str,
        username: str,
        password: Optional[str],
        data: Mapping[str, Any],
    ) -> ExternalUser:
        encrypted_password = self._encrypt(password) if password else None
        with self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO external_users (
                        user_id, order_id, external_id, username, password_encrypted, data, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        order.user.id,
                        order.id,
                        str(external_id),
                        username,
                        encrypted_password,
                        _dump_json(data),
                        _serialize_datetime(_current_timestamp()),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("A panel account is already linked to this user") from exc

        return ExternalUser(
            user_id=order.user.id,
            external_id=str(external_id),
            username=username,
            password=password,
            data=dict(data),
        )

    # ------------------------------------------------------------------
    # Email outbox
    # ------------------------------------------------------------------
    def enqueue_email(self, user_id: int, message: EmailMessage) -> QueuedEmail:
        created_at = _current_timestamp()
        button_name = message.button.name if message.button else None
        button_url = message.button.url if message.button else None
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO email_outbox (user_id, subject, content, button_name, button_url, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, message.subject, message.content, button_name, button_url, _serialize_datetime(created_at)),
            )
            email_id = cursor.lastrowid

        return QueuedEmail(
            id=email_id,
            user_id=user_id,
            subject=message.subject,
            content=message.content,
            button_name=button_name,
            button_url=button_url,
            created_at=created_at,
        )

    def list_pending_emails(self, user_id: Optional[int] = None) -> List[QueuedEmail]:
        query = "SELECT * FROM email_outbox WHERE sent_at IS NULL"
        params: List[object] = []
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_email(row) for row in rows]

    def mark_email_sent(self, email_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE email_outbox SET sent_at = ? WHERE id = ? AND sent_at IS NULL",
                (_serialize_datetime(_current_timestamp()), email_id),
            )
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> HostUser:
        return HostUser(
            id=int(row["id"]),
            first_name=str(row["first_name"]),
            last_name=str(row["last_name"]),
            email=str(row["email"]),
        )

    def _row_to_package(self, row: sqlite3.Row) -> Package:
        return Package(
            id=int(row["id"]),
            name=str(row["name"]),
            config=_load_json(row["config"]) or {},
        )

    def _row_to_external_user(self, row: sqlite3.Row) -> ExternalUser:
        encrypted = row["password_encrypted"]
        return ExternalUser(
            user_id=int(row["user_id"]),
            external_id=str(row["external_id"]),
            username=str(row["username"]),
            password=self._decrypt(str(encrypted)) if encrypted else None,
            data=_load_json(row["data"]) or {},
        )

    def _row_to_email(self, row: sqlite3.Row) -> QueuedEmail:
        sent_at = row["sent_at"]
        return QueuedEmail(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            subject=str(row["subject"]),
            content=str(row["content"]),
            button_name=row["button_name"],
            button_url=row["button_url"],
            created_at=_parse_datetime(str(row["created_at"])),
            sent_at=_parse_datetime(str(sent_at)) if sent_at else None,
        )

    def _build_cipher(self, secret: Optional[str]) -> Optional[Fernet]:
        if not secret:
            return None
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        key = base64.urlsafe_b64encode(digest)
        return Fernet(key)

    def _require_cipher(self) -> Fernet:
        if self._cipher is None:
            raise ConfigurationError(
                "Encryption secret is not configured. Set VIRTFUSION_SECRET to store encrypted settings."
            )
        return self._cipher

    def _encrypt(self, value: str) -> str:
        cipher = self._require_cipher()
        token = cipher.encrypt(value.encode("utf-8"))
        return token.decode("utf-8")

    def _decrypt(self, encrypted: str) -> str:
        cipher = self._require_cipher()
        try:
            plaintext = cipher.decrypt(encrypted.encode("utf-8"))
        except InvalidToken as exc:
            raise ConfigurationError("Stored value could not be decrypted. Re-save the setting to repair it.") from exc
        return plaintext.decode("utf-8")


class DatabaseNotifier:
    """Queue notification emails in the outbox for the host mailer to deliver."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def send(self, user: HostUser, message: EmailMessage) -> None:
        self._database.enqueue_email(user.id, message)


__all__ = ["Database", "DatabaseNotifier", "ENCRYPTED_PREFIX", "resolve_database_path"]
