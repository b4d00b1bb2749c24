"""Persistent storage of users, sessions, files and shares on SQLite."""

from __future__ import annotations

import os
import sqlite3
import threading
from dataclasses import dataclass

SESSION_MINUTES = 30
SEARCH_LIMIT = 10
LIST_TYPES = ("my", "shared", "all")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL,
    email TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TABLE IF NOT EXISTS sessions (
    session_id TEXT PRIMARY KEY,
    user_id INTEGER NOT NULL,
    username TEXT NOT NULL,
    expire_time TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    filename TEXT NOT NULL,
    original_filename TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    file_type TEXT NOT NULL,
    user_id INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TABLE IF NOT EXISTS file_shares (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_id INTEGER NOT NULL,
    owner_id INTEGER NOT NULL,
    shared_with_id INTEGER,
    share_type TEXT NOT NULL,
    share_code TEXT NOT NULL,
    extract_code TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    expire_time TEXT
);
"""

_NOT_EXPIRED = "(fs.expire_time IS NULL OR fs.expire_time > datetime('now'))"


@dataclass
class User:
    id: int
    username: str
    email: str | None = None


@dataclass
class FileRecord:
    id: int
    filename: str
    original_name: str
    size: int = 0
    file_type: str = ""
    created_at: str = ""
    user_id: int = 0
    is_owner: bool = False
    owner_username: str = ""


@dataclass
class ShareRecord:
    id: int
    file_id: int
    owner_id: int
    shared_with_id: int | None
    share_type: str
    share_code: str
    extract_code: str | None
    created_at: str
    expire_time: str | None
    shared_with_username: str | None = None


def _share_from_row(row: sqlite3.Row) -> ShareRecord:
    return ShareRecord(
        id=row["share_id"],
        file_id=row["file_id"],
        owner_id=row["owner_id"],
        shared_with_id=row["shared_with_id"],
        share_type=row["share_type"],
        share_code=row["share_code"],
        extract_code=row["extract_code"],
        created_at=row["share_created_at"],
        expire_time=row["expire_time"],
    )


def _file_from_row(row: sqlite3.Row, **extra) -> FileRecord:
    return FileRecord(
        id=row["f_id"],
        filename=row["filename"],
        original_name=row["original_filename"],
        size=row["file_size"],
        file_type=row["file_type"],
        created_at=row["f_created_at"],
        user_id=row["user_id"],
        **extra,
    )


_FILE_COLUMNS = (
    "f.id AS f_id, f.filename, f.original_filename, f.file_size, f.file_type, "
    "f.created_at AS f_created_at, f.user_id"
)
_SHARE_COLUMNS = (
    "fs.id AS share_id, fs.file_id, fs.owner_id, fs.shared_with_id, fs.share_type, "
    "fs.share_code, fs.extract_code, fs.created_at AS share_created_at, fs.expire_time"
)


class Store:
    """Database of users, login sessions, uploaded files and their shares."""

    def __init__(self, path) -> None:
        self.path = os.fspath(path)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._conn:
            self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _fetchone(self, query: str, args: tuple = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(query, args).fetchone()

    def _fetchall(self, query: str, args: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, args).fetchall()

    def _execute(self, query: str, args: tuple = ()) -> sqlite3.Cursor:
        with self._lock, self._conn:
            return self._conn.execute(query, args)

    # users

    def create_user(self, username: str, password_hash: str, email: str | None = None) -> int:
        """Insert a user and return its id; a taken username raises ValueError."""
        try:
            cursor = self._execute(
                "INSERT INTO users (username, password, email) VALUES (?, ?, ?)",
                (username, password_hash, email or None),
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"username already exists: {username}") from exc
        return cursor.lastrowid

    def find_user(self, username: str) -> User | None:
        row = self._fetchone("SELECT id, username, email FROM users WHERE username = ?", (username,))
        return User(row["id"], row["username"], row["email"]) if row else None

    def authenticate(self, username: str, password_hash: str) -> User | None:
        """Return the user whose name and password hash both match."""
        row = self._fetchone(
            "SELECT id, username, email FROM users WHERE username = ? AND password = ?",
            (username, password_hash),
        )
        return User(row["id"], row["username"], row["email"]) if row else None

    def search_users(self, keyword: str, exclude_id: int) -> list[User]:
        """Return up to ten users whose name contains ``keyword``."""
        rows = self._fetchall(
            "SELECT id, username, email FROM users WHERE username LIKE ? AND id != ? "
            "ORDER BY id LIMIT ?",
            (f"%{keyword}%", exclude_id, SEARCH_LIMIT),
        )
        return [User(row["id"], row["username"] or "", row["email"] or "") for row in rows]

    # sessions

    def save_session(self, session_id: str, user_id: int, username: str) -> None:
        self._execute(
            "INSERT INTO sessions (session_id, user_id, username, expire_time) "
            "VALUES (?, ?, ?, datetime('now', ?))",
            (session_id, user_id, username, f"+{SESSION_MINUTES} minutes"),
        )

    def validate_session(self, session_id: str) -> User | None:
        """Return the session's user and extend its lifetime, or None."""
        if not session_id:
            return None
        with self._lock:
            row = self._fetchone(
                "SELECT user_id, username FROM sessions "
                "WHERE session_id = ? AND expire_time > datetime('now')",
                (session_id,),
            )
            if row is None:
                return None
            self._execute(
                "UPDATE sessions SET expire_time = datetime('now', ?) WHERE session_id = ?",
                (f"+{SESSION_MINUTES} minutes", session_id),
            )
        return User(row["user_id"], row["username"])

    def delete_session(self, session_id: str) -> None:
        if session_id:
            self._execute("DELETE FROM sessions WHERE session_id = ?", (session_id,))

    # files

    def add_file(self, filename: str, original_name: str, size: int, file_type: str, user_id: int) -> int:
        cursor = self._execute(
            "INSERT INTO files (filename, original_filename, file_size, file_type, user_id) "
            "VALUES (?, ?, ?, ?, ?)",
            (filename, original_name, size, file_type, user_id),
        )
        return cursor.lastrowid

    def list_files(self, user_id: int, list_type: str = "my") -> list[FileRecord]:
        """List a user's own files, files shared with them, or both."""
        if list_type == "my":
            query = (
                f"SELECT {_FILE_COLUMNS}, 1 AS is_owner FROM files f "
                "WHERE f.user_id = ? ORDER BY f.id"
            )
            args: tuple = (user_id,)
        elif list_type == "shared":
            query = (
                f"SELECT {_FILE_COLUMNS}, 0 AS is_owner FROM files f "
                "JOIN file_shares fs ON f.id = fs.file_id "
                "WHERE (fs.shared_with_id = ? OR fs.share_type = 'public') "
                "AND f.user_id != ? ORDER BY f.id"
            )
            args = (user_id, user_id)
        elif list_type == "all":
            query = (
                f"SELECT {_FILE_COLUMNS}, "
                "CASE WHEN f.user_id = ? THEN 1 ELSE 0 END AS is_owner FROM files f "
                "LEFT JOIN file_shares fs ON f.id = fs.file_id "
                "WHERE f.user_id = ? OR fs.shared_with_id = ? OR fs.share_type = 'public' "
                "ORDER BY f.id"
            )
            args = (user_id, user_id, user_id)
        else:
            raise ValueError(f"unknown list type: {list_type!r}")
        return [
            _file_from_row(row, is_owner=row["is_owner"] == 1)
            for row in self._fetchall(query, args)
        ]

    def file_share(self, file_id: int) -> ShareRecord | None:
        """Return the first share of a file, with the recipient's name for user shares."""
        row = self._fetchone(
            f"SELECT {_SHARE_COLUMNS}, u.username AS shared_with_username "
            "FROM file_shares fs LEFT JOIN users u ON u.id = fs.shared_with_id "
            "WHERE fs.file_id = ? ORDER BY fs.id LIMIT 1",
            (file_id,),
        )
        if row is None:
            return None
        share = _share_from_row(row)
        if share.share_type == "user":
            share.shared_with_username = row["shared_with_username"]
        return share

    def owned_file_id(self, filename: str, user_id: int) -> int | None:
        row = self._fetchone(
            "SELECT id FROM files WHERE filename = ? AND user_id = ?", (filename, user_id)
        )
        return row["id"] if row else None

    def owns_file(self, file_id: int, user_id: int) -> bool:
        row = self._fetchone(
            "SELECT 1 FROM files WHERE id = ? AND user_id = ?", (file_id, user_id)
        )
        return row is not None

    def delete_file(self, file_id: int) -> bool:
        """Delete a file record; return whether one was removed."""
        return self._execute("DELETE FROM files WHERE id = ?", (file_id,)).rowcount > 0

    def remove_shares(self, file_id: int) -> int:
        """Delete every share of a file and return how many there were."""
        return self._execute("DELETE FROM file_shares WHERE file_id = ?", (file_id,)).rowcount

    # shares

    def has_user_share(self, file_id: int, shared_with_id: int) -> bool:
        row = self._fetchone(
            "SELECT 1 FROM file_shares WHERE file_id = ? AND shared_with_id = ? "
            "AND share_type = 'user'",
            (file_id, shared_with_id),
        )
        return row is not None

    def add_share(
        self,
        file_id: int,
        owner_id: int,
        shared_with_id: int | None,
        share_type: str,
        share_code: str,
        extract_code: str | None,
        expire_hours: int | None,
    ) -> int:
        """Insert a share and return its id; positive ``expire_hours`` sets an expiry."""
        if expire_hours is not None and expire_hours > 0:
            expire_sql, expire_args = "datetime('now', ?)", (f"+{int(expire_hours)} hours",)
        else:
            expire_sql, expire_args = "NULL", ()
        cursor = self._execute(
            "INSERT INTO file_shares (file_id, owner_id, shared_with_id, share_type, "
            f"share_code, extract_code, expire_time) VALUES (?, ?, ?, ?, ?, ?, {expire_sql})",
            (file_id, owner_id, shared_with_id, share_type, share_code, extract_code, *expire_args),
        )
        return cursor.lastrowid

    def find_shared_file(self, filename: str, share_code: str) -> tuple[FileRecord, ShareRecord] | None:
        """Return the file and its unexpired share matching both name and code."""
        row = self._fetchone(
            f"SELECT {_FILE_COLUMNS}, {_SHARE_COLUMNS} FROM files f "
            "JOIN file_shares fs ON f.id = fs.file_id "
            f"WHERE f.filename = ? AND fs.share_code = ? AND {_NOT_EXPIRED} "
            "ORDER BY fs.id LIMIT 1",
            (filename, share_code),
        )
        return (_file_from_row(row), _share_from_row(row)) if row else None

    def find_file(self, filename: str) -> FileRecord | None:
        row = self._fetchone(
            f"SELECT {_FILE_COLUMNS} FROM files f WHERE f.filename = ? ORDER BY f.id LIMIT 1",
            (filename,),
        )
        return _file_from_row(row) if row else None

    def share_details(self, share_code: str) -> tuple[FileRecord, ShareRecord] | None:
        """Return the shared file (with its owner's name) and the unexpired share."""
        row = self._fetchone(
            f"SELECT {_FILE_COLUMNS}, {_SHARE_COLUMNS}, u.username AS owner_username "
            "FROM file_shares fs JOIN files f ON fs.file_id = f.id "
            "JOIN users u ON f.user_id = u.id "
            f"WHERE fs.share_code = ? AND {_NOT_EXPIRED} ORDER BY fs.id LIMIT 1",
            (share_code,),
        )
        if row is None:
            return None
        return _file_from_row(row, owner_username=row["owner_username"]), _share_from_row(row)