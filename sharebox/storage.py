import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

from werkzeug.security import generate_password_hash

from .downloads import DownloadRecord
from .guest_links import GuestLink
from .lifetimes import (
    DEFAULT_FILE_LIFETIME,
    FILE_LIFETIME_INFINITE,
    ExpirationTime,
    InvalidLifetimeError,
    Lifetime,
)

BASE_DIR = Path(__file__).resolve().parent


def _resolve_env_path(env_key: str, default: Path) -> Path:
    """Resolve an environment-provided path or fall back to *default*."""

    value = os.environ.get(env_key)
    if value:
        return Path(value).expanduser().resolve()
    return default.resolve()


STORAGE_ROOT = _resolve_env_path("SHAREBOX_STORAGE_ROOT", BASE_DIR)
DATA_DIR = _resolve_env_path("SHAREBOX_DATA_DIR", STORAGE_ROOT / "data")
LOGS_DIR = _resolve_env_path("SHAREBOX_LOGS_DIR", STORAGE_ROOT / "logs")
DB_PATH = DATA_DIR / "sharebox.db"
CONFIG_PATH = DATA_DIR / "config.json"


def _default_password_hash() -> str:
    return generate_password_hash("sharebox")


def _safe_int_env(key: str, default: int, min_value: int = 1) -> int:
    """Safely parse integer environment variable with error handling."""
    try:
        return max(min_value, int(os.environ.get(key, str(default))))
    except (TypeError, ValueError):
        logger = logging.getLogger("sharebox.config")
        logger.warning(
            "Invalid value for %s: %s. Using default: %d",
            key, os.environ.get(key), default
        )
        return default


DEFAULT_CLEANUP_INTERVAL_MINUTES = _safe_int_env("SHAREBOX_CLEANUP_INTERVAL_MINUTES", 5)
DEFAULT_LOGIN_RATE_LIMIT_PER_MINUTE = _safe_int_env("SHAREBOX_RATE_LIMIT_LOGINS_PER_MINUTE", 10)

DEFAULT_CONFIG: Dict[str, Any] = {
    "default_file_lifetime": DEFAULT_FILE_LIFETIME.to_json(),
    "cleanup_interval_minutes": DEFAULT_CLEANUP_INTERVAL_MINUTES,
    "login_rate_limit_per_minute": DEFAULT_LOGIN_RATE_LIMIT_PER_MINUTE,
    "ui_username": "admin",
    "ui_password_hash": _default_password_hash(),
}

CONFIG_INT_KEYS = {"cleanup_interval_minutes", "login_rate_limit_per_minute"}

CONFIG_STRING_KEYS = {"ui_username", "ui_password_hash"}


class EntryNotFoundError(LookupError):
    """Raised when no entry exists with the requested ID."""

    def __init__(self, entry_id: str) -> None:
        super().__init__(f"entry not found: {entry_id}")
        self.entry_id = entry_id


class GuestLinkNotFoundError(LookupError):
    """Raised when no guest link exists with the requested ID."""

    def __init__(self, guest_link_id: str) -> None:
        super().__init__(f"guest link not found: {guest_link_id}")
        self.guest_link_id = guest_link_id


@dataclass
class Settings:
    default_file_lifetime: Lifetime


@dataclass
class UploadMetadata:
    id: str
    filename: str
    content_type: Optional[str]
    size: int
    uploaded: datetime
    expiration: ExpirationTime
    note: str = ""
    guest_link_id: Optional[str] = None
    download_count: int = 0


def get_config_mtime() -> float:
    """Return the last modified timestamp for the persisted config file."""

    ensure_directories()
    try:
        return CONFIG_PATH.stat().st_mtime
    except OSError:
        return 0.0


def _coerce_positive_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return int(default)
    try:
        coerced = int(value)
    except (TypeError, ValueError, OverflowError):
        return int(default)
    return coerced if coerced >= 1 else int(default)


def _normalize_config(raw_config: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(raw_config, dict):
        raw_config = {}

    config = DEFAULT_CONFIG.copy()

    if "default_file_lifetime" in raw_config:
        try:
            lifetime = Lifetime.parse(raw_config.get("default_file_lifetime"))
        except InvalidLifetimeError:
            lifetime = DEFAULT_FILE_LIFETIME
        config["default_file_lifetime"] = lifetime.to_json()

    for key in CONFIG_INT_KEYS:
        if key in raw_config:
            config[key] = _coerce_positive_int(raw_config.get(key), config[key])

    for key in CONFIG_STRING_KEYS:
        if key in raw_config and isinstance(raw_config.get(key), str):
            value = raw_config.get(key).strip()
            config[key] = value or config[key]

    return config


def ensure_directories() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)


def load_config() -> Dict[str, Any]:
    ensure_directories()
    if CONFIG_PATH.exists():
        with CONFIG_PATH.open("r", encoding="utf-8") as config_file:
            try:
                raw = json.load(config_file)
            except json.JSONDecodeError:
                logger.warning("config_unreadable path=%s", CONFIG_PATH)
                raw = DEFAULT_CONFIG.copy()
    else:
        raw = DEFAULT_CONFIG.copy()
        save_config(raw)

    data = _normalize_config(raw)
    if raw != data:
        save_config(data)
    return data


def save_config(config: Dict[str, Any]) -> None:
    ensure_directories()
    normalized = _normalize_config(config)

    # Write to a temporary file first so readers never see a partial config.
    temp_path = CONFIG_PATH.with_suffix(".tmp")
    try:
        with temp_path.open("w", encoding="utf-8") as config_file:
            json.dump(normalized, config_file, indent=2)
            config_file.flush()
            os.fsync(config_file.fileno())
        temp_path.replace(CONFIG_PATH)
    except Exception:
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError:
                pass
        raise


def read_settings() -> Settings:
    config = load_config()
    return Settings(default_file_lifetime=Lifetime.parse(config["default_file_lifetime"]))


def update_settings(settings: Settings) -> None:
    config = load_config()
    config["default_file_lifetime"] = settings.default_file_lifetime.to_json()
    save_config(config)
    logger.info(
        "settings_updated default_file_lifetime=%s",
        settings.default_file_lifetime.to_json(),
    )


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    ensure_directories()
    conn = sqlite3.connect(DB_PATH, timeout=30.0)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        if conn.in_transaction:
            conn.commit()
    except Exception:
        if conn.in_transaction:
            conn.rollback()
        raise
    finally:
        conn.close()


def init_db() -> None:
    with get_db() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS guest_links (
                id TEXT PRIMARY KEY,
                label TEXT NOT NULL DEFAULT '',
                created_at REAL NOT NULL,
                expires_at REAL,
                max_file_lifetime_days INTEGER,
                max_file_bytes INTEGER,
                max_file_uploads INTEGER
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS entries (
                id TEXT PRIMARY KEY,
                filename TEXT NOT NULL,
                content_type TEXT,
                size INTEGER NOT NULL,
                uploaded_at REAL NOT NULL,
                expires_at REAL,
                note TEXT NOT NULL DEFAULT '',
                guest_link_id TEXT REFERENCES guest_links(id) ON DELETE SET NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS downloads (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                entry_id TEXT NOT NULL REFERENCES entries(id) ON DELETE CASCADE,
                downloaded_at REAL NOT NULL,
                client_ip TEXT NOT NULL,
                user_agent TEXT NOT NULL DEFAULT ''
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_entries_expires_at ON entries(expires_at)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_entries_guest_link ON entries(guest_link_id)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_downloads_entry ON downloads(entry_id, downloaded_at)"
        )
        conn.commit()


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def _lifetime_from_column(days: Optional[int]) -> Lifetime:
    if days is None:
        return FILE_LIFETIME_INFINITE
    return Lifetime.in_days(int(days))


def _lifetime_to_column(lifetime: Lifetime) -> Optional[int]:
    return None if lifetime.is_infinite else lifetime.days


_GUEST_LINK_QUERY = """
    SELECT guest_links.*,
           (SELECT COUNT(*) FROM entries WHERE entries.guest_link_id = guest_links.id)
               AS files_uploaded
    FROM guest_links
"""

_ENTRY_QUERY = """
    SELECT entries.*,
           (SELECT COUNT(*) FROM downloads WHERE downloads.entry_id = entries.id)
               AS download_count
    FROM entries
"""


def _guest_link_from_row(row: sqlite3.Row) -> GuestLink:
    return GuestLink(
        id=row["id"],
        label=row["label"],
        created=_to_datetime(row["created_at"]),
        expiration=ExpirationTime.from_timestamp(row["expires_at"]),
        max_file_lifetime=_lifetime_from_column(row["max_file_lifetime_days"]),
        max_file_bytes=row["max_file_bytes"],
        max_file_uploads=row["max_file_uploads"],
        files_uploaded=int(row["files_uploaded"] or 0),
    )


def _entry_from_row(row: sqlite3.Row) -> UploadMetadata:
    return UploadMetadata(
        id=row["id"],
        filename=row["filename"],
        content_type=row["content_type"],
        size=int(row["size"]),
        uploaded=_to_datetime(row["uploaded_at"]),
        expiration=ExpirationTime.from_timestamp(row["expires_at"]),
        note=row["note"] or "",
        guest_link_id=row["guest_link_id"],
        download_count=int(row["download_count"] or 0),
    )


def insert_guest_link(link: GuestLink) -> None:
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO guest_links (
                id, label, created_at, expires_at,
                max_file_lifetime_days, max_file_bytes, max_file_uploads
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                link.id,
                link.label,
                link.created.timestamp(),
                link.expiration.timestamp(),
                _lifetime_to_column(link.max_file_lifetime),
                link.max_file_bytes,
                link.max_file_uploads,
            ),
        )
        conn.commit()
    logger.info("guest_link_created guest_link_id=%s", link.id)


def get_guest_link(guest_link_id: str) -> GuestLink:
    with get_db() as conn:
        row = conn.execute(
            _GUEST_LINK_QUERY + " WHERE guest_links.id = ?", (guest_link_id,)
        ).fetchone()
    if row is None:
        raise GuestLinkNotFoundError(guest_link_id)
    return _guest_link_from_row(row)


def get_guest_links() -> List[GuestLink]:
    with get_db() as conn:
        rows = conn.execute(_GUEST_LINK_QUERY).fetchall()
    return [_guest_link_from_row(row) for row in rows]


def delete_guest_link(guest_link_id: str) -> None:
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM guest_links WHERE id = ?", (guest_link_id,))
        if cursor.rowcount == 0:
            raise GuestLinkNotFoundError(guest_link_id)
        conn.commit()
    logger.info("guest_link_deleted guest_link_id=%s", guest_link_id)


def insert_entry(entry: UploadMetadata) -> None:
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO entries (
                id, filename, content_type, size, uploaded_at, expires_at,
                note, guest_link_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.filename,
                entry.content_type,
                entry.size,
                entry.uploaded.timestamp(),
                entry.expiration.timestamp(),
                entry.note,
                entry.guest_link_id,
            ),
        )
        conn.commit()
    logger.info(
        "entry_registered entry_id=%s size=%d guest_link_id=%s",
        entry.id,
        entry.size,
        entry.guest_link_id or "-",
    )


def get_entry_metadata(entry_id: str) -> UploadMetadata:
    with get_db() as conn:
        row = conn.execute(_ENTRY_QUERY + " WHERE entries.id = ?", (entry_id,)).fetchone()
    if row is None:
        raise EntryNotFoundError(entry_id)
    return _entry_from_row(row)


def get_entries_metadata() -> List[UploadMetadata]:
    with get_db() as conn:
        rows = conn.execute(_ENTRY_QUERY).fetchall()
    return [_entry_from_row(row) for row in rows]


def update_entry(
    entry_id: str,
    *,
    filename: str,
    note: str,
    expiration: ExpirationTime,
) -> None:
    with get_db() as conn:
        cursor = conn.execute(
            "UPDATE entries SET filename = ?, note = ?, expires_at = ? WHERE id = ?",
            (filename, note, expiration.timestamp(), entry_id),
        )
        if cursor.rowcount == 0:
            raise EntryNotFoundError(entry_id)
        conn.commit()
    logger.info("entry_updated entry_id=%s", entry_id)


def delete_entry(entry_id: str) -> None:
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
        if cursor.rowcount == 0:
            raise EntryNotFoundError(entry_id)
        conn.commit()
    logger.info("entry_deleted entry_id=%s", entry_id)


def record_download(entry_id: str, record: DownloadRecord) -> None:
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO downloads (entry_id, downloaded_at, client_ip, user_agent)
            VALUES (?, ?, ?, ?)
            """,
            (entry_id, record.time.timestamp(), record.client_ip, record.user_agent),
        )
        conn.commit()


def get_entry_downloads(entry_id: str) -> List[DownloadRecord]:
    """Return the download history of an entry, newest first."""

    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT downloaded_at, client_ip, user_agent FROM downloads
            WHERE entry_id = ?
            ORDER BY downloaded_at DESC, id DESC
            """,
            (entry_id,),
        ).fetchall()
    return [
        DownloadRecord(
            time=_to_datetime(row["downloaded_at"]),
            client_ip=row["client_ip"],
            user_agent=row["user_agent"] or "",
        )
        for row in rows
    ]


def cleanup_expired_entries(now: Optional[datetime] = None) -> int:
    cutoff = (now or datetime.now(tz=timezone.utc)).timestamp()
    with get_db() as conn:
        cursor = conn.execute(
            "DELETE FROM entries WHERE expires_at IS NOT NULL AND expires_at <= ?",
            (cutoff,),
        )
        removed = cursor.rowcount
        conn.commit()
    if removed:
        logger.info("cleanup_completed removed=%d", removed)
    return removed


def get_storage_statistics(now: Optional[datetime] = None) -> Dict[str, int]:
    cutoff = (now or datetime.now(tz=timezone.utc)).timestamp()
    with get_db() as conn:
        row = conn.execute(
            """
            SELECT
                COUNT(*) AS total_count,
                COALESCE(SUM(size), 0) AS total_bytes,
                COALESCE(SUM(CASE WHEN expires_at IS NOT NULL AND expires_at <= ? THEN 1 ELSE 0 END), 0) AS expired_count
            FROM entries
            """,
            (cutoff,),
        ).fetchone()
    total_count = int(row["total_count"] or 0)
    expired_count = int(row["expired_count"] or 0)
    try:
        database_bytes = DB_PATH.stat().st_size
    except OSError:
        database_bytes = 0
    return {
        "total_count": total_count,
        "active_count": total_count - expired_count,
        "expired_count": expired_count,
        "total_bytes": int(row["total_bytes"] or 0),
        "database_bytes": database_bytes,
    }


logger = logging.getLogger("sharebox.storage")

ensure_directories()
init_db()
