import hashlib
import hmac
import logging
import secrets
import sqlite3
from pathlib import Path

from backend.config import (
    ADMIN_PASSWORD,
    ADMIN_USERNAME,
    DB_PATH,
)

logger = logging.getLogger(__name__)

PASSWORD_HASH_ALGO = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 120_000


def _hash_password(password: str, *, salt: str | None = None) -> str:
    salt_value = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        PASSWORD_HASH_ITERATIONS,
    ).hex()
    return f"{PASSWORD_HASH_ALGO}${PASSWORD_HASH_ITERATIONS}${salt_value}${digest}"


def _verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, rounds_text, salt_value, expected_digest = password_hash.split("$", 3)
        rounds = int(rounds_text)
    except (ValueError, TypeError):
        return False

    if algo != PASSWORD_HASH_ALGO or rounds <= 0:
        return False

    candidate_digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        rounds,
    ).hex()
    return hmac.compare_digest(candidate_digest, expected_digest)


def connect_db(db_path: Path | str | None = None) -> sqlite3.Connection:
    # Resolve DB_PATH at call time so tests can repoint it.
    conn = sqlite3.connect(str(db_path or DB_PATH), check_same_thread=False, timeout=10)
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA journal_mode = WAL;")
    return conn


def _ensure_default_admin(cursor: sqlite3.Cursor) -> None:
    username = (ADMIN_USERNAME or "").strip()
    password = (ADMIN_PASSWORD or "").strip()
    if not username or not password:
        return

    cursor.execute(
        """
        SELECT id
        FROM admin_users
        WHERE username = ? COLLATE NOCASE
        """,
        (username,),
    )
    if cursor.fetchone():
        return

    cursor.execute(
        """
        INSERT INTO admin_users (username, password_hash)
        VALUES (?, ?)
        """,
        (username, _hash_password(password)),
    )
    logger.info("Seeded default admin user %r", username)


def create_tables(db_path: Path | str | None = None) -> None:
    conn = connect_db(db_path)
    cursor = conn.cursor()

    cursor.execute(
        """
    CREATE TABLE IF NOT EXISTS admin_users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE COLLATE NOCASE,
        password_hash TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """
    )

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS students (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id TEXT NOT NULL UNIQUE,   -- uppercase
        name TEXT NOT NULL,
        department TEXT NOT NULL,
        year INTEGER NOT NULL CHECK (year BETWEEN 1 AND 4),
        section TEXT NOT NULL,             -- uppercase
        fingerprint_id INTEGER,
        device_id TEXT,                    -- uppercase
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(fingerprint_id, device_id)
    )
    """)
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_students_class ON students (department, year, section)"
    )

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS devices (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        device_id TEXT NOT NULL UNIQUE,    -- uppercase
        name TEXT NOT NULL,
        department TEXT NOT NULL,
        year INTEGER NOT NULL CHECK (year BETWEEN 1 AND 4),
        section TEXT NOT NULL,
        model TEXT NOT NULL DEFAULT 'R307',
        is_active INTEGER NOT NULL DEFAULT 1,
        is_online INTEGER NOT NULL DEFAULT 0,
        last_seen TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    # Append-only; rows are never updated.
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendance_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id TEXT NOT NULL,
        fingerprint_id INTEGER NOT NULL,
        timestamp TEXT NOT NULL,           -- YYYY-MM-DD HH:MM:SS.ffffff
        date TEXT NOT NULL,                -- YYYY-MM-DD
        session TEXT CHECK (session IN ('morning', 'afternoon')),
        action TEXT CHECK (action IN ('IN', 'OUT')),
        device_id TEXT NOT NULL,
        source TEXT NOT NULL DEFAULT 'scanner' CHECK (source IN ('scanner', 'manual')),
        created_at TEXT NOT NULL
    )
    """)
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_events_student_date ON attendance_events (student_id, date)"
    )
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_events_timestamp ON attendance_events (timestamp DESC, student_id)"
    )
    # At most one scanner IN and one scanner OUT per student/day/session.
    cursor.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_events_scanner_action
        ON attendance_events (student_id, date, session, action)
        WHERE source = 'scanner'
        """
    )

    _ensure_default_admin(cursor)

    conn.commit()
    conn.close()


# -----------------------------
# Admin users
# -----------------------------
def create_admin_user(username: str, password: str) -> int:
    clean_username = username.strip()
    clean_password = password.strip()
    if not clean_username or not clean_password:
        raise ValueError("Username and password are required.")

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO admin_users (username, password_hash)
        VALUES (?, ?)
        """,
        (clean_username, _hash_password(clean_password)),
    )
    admin_id = cur.lastrowid
    conn.commit()
    conn.close()
    return admin_id


def verify_admin_credentials(username: str, password: str) -> dict | None:
    clean_username = username.strip()
    clean_password = password.strip()
    if not clean_username or not clean_password:
        return None

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, username, password_hash
        FROM admin_users
        WHERE username = ? COLLATE NOCASE
        """,
        (clean_username,),
    )
    row = cur.fetchone()
    conn.close()

    if not row:
        return None

    admin_id, saved_username, password_hash = row
    if not _verify_password(clean_password, password_hash):
        return None

    return {"id": admin_id, "username": saved_username}
