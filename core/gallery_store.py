"""
Gallery Store Module

This module handles persistence of identities, their enrolled face
embeddings and the authentication audit trail.

Everything lives in one SQLite database:
- users:      identity records (name, email)
- face_data:  at most one enrolled embedding per user (UNIQUE user_id),
              stored as a JSON array together with the enrollment quality
- auth_logs:  one row per authentication decision

The GalleryStore class provides what the decision engine needs from
storage (the gallery reader, the audit append, and the identity
existence / uniqueness checks) plus identity CRUD for the API.

Usage:
    from core.gallery_store import GalleryStore

    store = GalleryStore(db_path="storage/face_auth.sqlite")
    user = store.create_user("Alice", "alice@example.com")
    face_id = store.save_enrollment(user["user_id"], embedding, quality=0.92)
    gallery = store.load_gallery()
"""

import json
import logging
import re
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from core.errors import ConflictError, NotFoundError, ValidationError
from core.matching.interfaces import GalleryEntry

# Setup logging
logger = logging.getLogger(__name__)


MAX_NAME_LENGTH = 50
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def generate_user_id() -> str:
    """
    Generate a unique user ID.

    Format: "usr_" followed by 8 random hex characters.
    """
    return f"usr_{uuid.uuid4().hex[:8]}"


def generate_face_id() -> str:
    """Generate a unique enrollment ID ("face_" + 8 hex characters)."""
    return f"face_{uuid.uuid4().hex[:8]}"


def sanitize_input(value: str) -> str:
    """Trim whitespace and strip angle brackets."""
    return value.strip().replace("<", "").replace(">", "")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _validate_name(name: Any) -> str:
    if not isinstance(name, str):
        raise ValidationError("A valid name is required (1-50 characters)", "name")
    name = sanitize_input(name)
    if not 1 <= len(name) <= MAX_NAME_LENGTH:
        raise ValidationError("A valid name is required (1-50 characters)", "name")
    return name


def _validate_email(email: Any) -> str:
    if not isinstance(email, str):
        raise ValidationError("A valid email address is required", "email")
    email = sanitize_input(email)
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("A valid email address is required", "email")
    return email


class GalleryStore:
    """
    SQLite-backed storage for identities, enrollments and audit records.

    The connection is shared between request threads, so every operation
    runs under one lock.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str):
        """
        Initialize the GalleryStore.

        Creates the database directory and schema if they don't exist.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

        logger.info(f"GalleryStore initialized: db={self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get or create the SQLite connection.

        Returns:
            SQLite connection with Row factory for dict-like access.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    def _init_database(self) -> None:
        """
        Initialize the SQLite database schema.

        Creates tables if they don't exist:
        - users: identity records
        - face_data: enrolled embeddings, one per user
        - auth_logs: authentication decisions
        """
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS face_data (
                    face_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL UNIQUE,
                    embedding TEXT NOT NULL,
                    quality REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS auth_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT,
                    success BOOLEAN NOT NULL,
                    similarity REAL,
                    timestamp TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE SET NULL
                )
            """)

            conn.commit()
            logger.debug("Database schema initialized")

    # ============================================================
    # Identities
    # ============================================================

    def create_user(self, name: str, email: str) -> Dict[str, Any]:
        """
        Create a new identity.

        Args:
            name: Display name (1-50 characters after sanitizing).
            email: Contact email; must be unique.

        Returns:
            The created user as a dictionary.

        Raises:
            ValidationError: Invalid name or email.
            ConflictError: Email already registered.
        """
        name = _validate_name(name)
        email = _validate_email(email)
        user_id = generate_user_id()
        now = _timestamp()

        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("""
                    INSERT INTO users (user_id, name, email, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (user_id, name, email, now, now))
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise ConflictError("This email address is already registered") from e

        logger.info(f"Created user {name} (id={user_id})")
        return self.get_user(user_id)

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Get an identity by id.

        Returns:
            Dictionary with user_id, name, email, created_at, updated_at
            and has_face_data, or None if not found.
        """
        with self._lock:
            cursor = self._get_connection().execute("""
                SELECT u.user_id, u.name, u.email, u.created_at, u.updated_at,
                       f.face_id IS NOT NULL AS has_face_data
                FROM users u
                LEFT JOIN face_data f ON f.user_id = u.user_id
                WHERE u.user_id = ?
            """, (user_id,))
            row = cursor.fetchone()

        return self._user_row(row) if row is not None else None

    def list_users(
        self,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        List identities, newest first.

        Args:
            search: Optional case-insensitive substring of name or email.
            limit: Maximum number of users to return.
            offset: Number of users to skip.

        Returns:
            (users, total) where total counts every match, not just the page.
        """
        where = ""
        params: List[Any] = []
        if search:
            where = "WHERE u.name LIKE ? OR u.email LIKE ?"
            pattern = f"%{search}%"
            params = [pattern, pattern]

        with self._lock:
            conn = self._get_connection()
            total = conn.execute(f"SELECT COUNT(*) FROM users u {where}", params).fetchone()[0]
            rows = conn.execute(f"""
                SELECT u.user_id, u.name, u.email, u.created_at, u.updated_at,
                       f.face_id IS NOT NULL AS has_face_data,
                       (SELECT COUNT(*) FROM auth_logs a WHERE a.user_id = u.user_id) AS auth_log_count
                FROM users u
                LEFT JOIN face_data f ON f.user_id = u.user_id
                {where}
                ORDER BY u.created_at DESC, u.rowid DESC
                LIMIT ? OFFSET ?
            """, params + [limit, offset]).fetchall()

        users = []
        for row in rows:
            user = self._user_row(row)
            user["auth_log_count"] = row["auth_log_count"]
            users.append(user)

        return users, total

    def update_user(
        self,
        user_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Update an identity's name and/or email.

        Raises:
            NotFoundError: Unknown user.
            ValidationError: Nothing to update, or an invalid value.
            ConflictError: Email used by another user.
        """
        updates: Dict[str, str] = {}
        if name is not None:
            updates["name"] = _validate_name(name)
        if email is not None:
            updates["email"] = _validate_email(email)

        with self._lock:
            if not self.user_exists(user_id):
                raise NotFoundError("User", user_id)
            if not updates:
                raise ValidationError("No fields to update were provided")

            updates["updated_at"] = _timestamp()
            assignments = ", ".join(f"{column} = ?" for column in updates)

            conn = self._get_connection()
            try:
                conn.execute(
                    f"UPDATE users SET {assignments} WHERE user_id = ?",
                    list(updates.values()) + [user_id],
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise ConflictError("This email address is already used by another user") from e

        return self.get_user(user_id)

    def delete_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Delete an identity together with its enrolled face data.

        Audit records are kept with their user reference cleared.

        Returns:
            The deleted user plus the number of face-data and audit rows
            that referenced it, or None if the user was not found.
        """
        with self._lock:
            user = self.get_user(user_id)
            if user is None:
                logger.warning(f"Cannot delete: user {user_id} not found")
                return None

            conn = self._get_connection()
            face_count = conn.execute(
                "SELECT COUNT(*) FROM face_data WHERE user_id = ?", (user_id,)
            ).fetchone()[0]
            log_count = conn.execute(
                "SELECT COUNT(*) FROM auth_logs WHERE user_id = ?", (user_id,)
            ).fetchone()[0]

            conn.execute("DELETE FROM users WHERE user_id = ?", (user_id,))
            conn.commit()

        logger.info(f"Deleted user {user_id} ({face_count} face data, {log_count} auth logs)")
        user["face_data_count"] = face_count
        user["auth_log_count"] = log_count
        return user

    def user_exists(self, user_id: str) -> bool:
        """Check if a user with the given ID exists."""
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT 1 FROM users WHERE user_id = ?", (user_id,)
            )
            return cursor.fetchone() is not None

    # ============================================================
    # Enrollment / gallery
    # ============================================================

    def has_enrollment(self, user_id: str) -> bool:
        """Check if the user already has an enrolled embedding."""
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT 1 FROM face_data WHERE user_id = ?", (user_id,)
            )
            return cursor.fetchone() is not None

    def save_enrollment(self, user_id: str, embedding: Sequence[float], quality: float) -> str:
        """
        Store the single enrolled embedding of a user.

        The UNIQUE constraint on face_data.user_id is what finally rejects
        two enrollments racing for the same user.

        Args:
            user_id: Identity to enroll.
            embedding: Embedding values.
            quality: Quality score of the enrolled frame.

        Returns:
            The new enrollment (face) id.

        Raises:
            NotFoundError: Unknown user.
            ConflictError: The user already has an enrollment.
        """
        values = np.asarray(embedding, dtype=np.float64).ravel().tolist()
        face_id = generate_face_id()

        with self._lock:
            if not self.user_exists(user_id):
                raise NotFoundError("User", user_id)

            conn = self._get_connection()
            try:
                conn.execute("""
                    INSERT INTO face_data (face_id, user_id, embedding, quality, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (face_id, user_id, json.dumps(values), float(quality), _timestamp()))
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise ConflictError("This user already has enrolled face data") from e

        logger.info(f"Saved enrollment {face_id} for user {user_id} "
                    f"(length={len(values)}, quality={quality:.3f})")
        return face_id

    def get_face_data(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Summary of a user's enrollment (without the embedding), or None."""
        with self._lock:
            row = self._get_connection().execute("""
                SELECT face_id, quality, created_at FROM face_data WHERE user_id = ?
            """, (user_id,)).fetchone()

        if row is None:
            return None

        return {"face_id": row["face_id"], "quality": row["quality"], "created_at": row["created_at"]}

    def load_gallery(self) -> List[GalleryEntry]:
        """
        Load every enrolled identity for 1:N matching.

        Entries come back in enrollment order. Embeddings are handed over
        as the stored JSON text; decoding (and skipping entries that fail
        to decode) is left to the matcher.
        """
        with self._lock:
            rows = self._get_connection().execute("""
                SELECT f.user_id, f.embedding, f.quality, u.name, u.email
                FROM face_data f
                JOIN users u ON u.user_id = f.user_id
                ORDER BY f.rowid
            """).fetchall()

        gallery = [
            GalleryEntry(
                identity_id=row["user_id"],
                embedding=row["embedding"],
                quality_at_enrollment=row["quality"],
                identity_name=row["name"],
                identity_email=row["email"],
            )
            for row in rows
        ]

        logger.debug(f"Loaded gallery with {len(gallery)} entries")
        return gallery

    # ============================================================
    # Audit trail
    # ============================================================

    def log_authentication(
        self,
        user_id: Optional[str],
        success: bool,
        similarity: Optional[float],
    ) -> int:
        """
        Append one authentication decision to the audit log.

        Args:
            user_id: Matched identity (None when not authenticated).
            success: Whether authentication succeeded.
            similarity: Best similarity, or None when no decision was made.

        Returns:
            The log entry ID.
        """
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute("""
                INSERT INTO auth_logs (user_id, success, similarity, timestamp)
                VALUES (?, ?, ?, ?)
            """, (user_id, success, similarity, _timestamp()))
            conn.commit()
            log_id = cursor.lastrowid

        logger.debug(f"Logged authentication attempt: id={log_id}, user={user_id}, "
                     f"success={success}, similarity={similarity}")
        return log_id

    def get_auth_logs(
        self,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """
        Get authentication log entries, newest first.

        Args:
            user_id: Filter by user ID (optional).
            limit: Maximum number of entries to return.
        """
        query = """
            SELECT a.id, a.user_id, a.success, a.similarity, a.timestamp,
                   u.name AS user_name, u.email AS user_email
            FROM auth_logs a
            LEFT JOIN users u ON u.user_id = a.user_id
        """
        params: List[Any] = []
        if user_id:
            query += " WHERE a.user_id = ?"
            params.append(user_id)
        query += " ORDER BY a.id DESC LIMIT ?"
        params.append(limit)

        with self._lock:
            rows = self._get_connection().execute(query, params).fetchall()

        return [
            {
                "id": row["id"],
                "user_id": row["user_id"],
                "success": bool(row["success"]),
                "similarity": row["similarity"],
                "timestamp": row["timestamp"],
                "user_name": row["user_name"],
                "user_email": row["user_email"],
            }
            for row in rows
        ]

    def get_auth_stats(self, recent: int = 10) -> Dict[str, Any]:
        """
        Aggregate over successful authentications.

        Returns:
            Dictionary with successful_authentications, average_similarity
            (of successes) and the most recent log entries.
        """
        with self._lock:
            row = self._get_connection().execute("""
                SELECT COUNT(*) AS count, AVG(similarity) AS avg_similarity
                FROM auth_logs WHERE success = 1
            """).fetchone()

        return {
            "successful_authentications": row["count"] or 0,
            "average_similarity": row["avg_similarity"] or 0.0,
            "recent_logs": self.get_auth_logs(limit=recent),
        }

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the database.

        Returns:
            Dictionary with total_users, enrolled_users,
            total_auth_attempts and successful_auths.
        """
        with self._lock:
            conn = self._get_connection()
            total_users = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            enrolled = conn.execute("SELECT COUNT(*) FROM face_data").fetchone()[0]
            auth_stats = conn.execute(
                "SELECT COUNT(*) AS total, SUM(success) AS successes FROM auth_logs"
            ).fetchone()

        return {
            "total_users": total_users,
            "enrolled_users": enrolled,
            "total_auth_attempts": auth_stats["total"] or 0,
            "successful_auths": int(auth_stats["successes"] or 0),
        }

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug("Database connection closed")

    @staticmethod
    def _user_row(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "user_id": row["user_id"],
            "name": row["name"],
            "email": row["email"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "has_face_data": bool(row["has_face_data"]),
        }


# Singleton instance for the store
_store_instance: Optional[GalleryStore] = None
_store_lock = threading.Lock()


def get_gallery_store(db_path: Optional[str] = None) -> GalleryStore:
    """
    Get or create the singleton GalleryStore instance.

    Args:
        db_path: Path to SQLite database. If None, uses storage.db_path
                 from config, relative to the project root.

    Returns:
        The shared GalleryStore instance.
    """
    global _store_instance

    with _store_lock:
        if _store_instance is None:
            if db_path is None:
                from core.config import get_storage_config, get_project_root

                configured = Path(get_storage_config()["db_path"])
                if configured.is_absolute():
                    db_path = str(configured)
                else:
                    try:
                        db_path = str(get_project_root() / configured)
                    except FileNotFoundError:
                        db_path = str(Path.cwd() / configured)

            _store_instance = GalleryStore(db_path)

    return _store_instance
