from __future__ import annotations

import sqlite3
from pathlib import Path

from loguru import logger

from chat_cli_bridge.sessions.models import HistoryEntry, utc_now

_DEFAULT_HISTORY_LIMIT = 50


class SessionStore:
    """Durable per-user record of assistant session ids.

    Each user has at most one current id and a bounded history of earlier
    ones. History keeps insertion order for eviction and a separate access
    order for listing.
    """

    def __init__(self, db_path: str, *, history_limit: int = _DEFAULT_HISTORY_LIMIT):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._history_limit = max(1, history_limit)
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._initialize_schema()

    @property
    def history_limit(self) -> int:
        return self._history_limit

    def close(self) -> None:
        self._conn.close()

    def get_current(self, user_id: str) -> str | None:
        row = self._conn.execute(
            "SELECT current_session_id FROM user_sessions WHERE user_id = ? LIMIT 1",
            (str(user_id),),
        ).fetchone()
        if row is None:
            return None
        return row["current_session_id"]

    def set_current(self, user_id: str, session_id: str) -> None:
        user_key = str(user_id)
        self._conn.execute(
            """
            INSERT INTO user_sessions (user_id, current_session_id, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                current_session_id = excluded.current_session_id,
                updated_at = excluded.updated_at
            """,
            (user_key, session_id, utc_now()),
        )
        self._add_to_history(user_key, session_id)
        self._touch(user_key, session_id)
        self._conn.commit()
        logger.debug(f"Stored current session {session_id} for user {user_key}")

    def clear_current(self, user_id: str) -> None:
        self._conn.execute(
            "UPDATE user_sessions SET current_session_id = NULL, updated_at = ? WHERE user_id = ?",
            (utc_now(), str(user_id)),
        )
        self._conn.commit()

    def add_to_history(self, user_id: str, session_id: str) -> bool:
        added = self._add_to_history(str(user_id), session_id)
        self._conn.commit()
        return added

    def touch(self, user_id: str, session_id: str) -> None:
        self._touch(str(user_id), session_id)
        self._conn.commit()

    def history(self, user_id: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT session_id FROM session_history WHERE user_id = ? ORDER BY seq ASC",
            (str(user_id),),
        ).fetchall()
        return [str(row["session_id"]) for row in rows]

    def history_size(self, user_id: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) AS n FROM session_history WHERE user_id = ?",
            (str(user_id),),
        ).fetchone()
        return int(row["n"])

    def recent(self, user_id: str, limit: int = 10) -> list[HistoryEntry]:
        rows = self._conn.execute(
            """
            SELECT session_id, added_at, last_access_at
            FROM session_history
            WHERE user_id = ?
            ORDER BY access_seq DESC
            LIMIT ?
            """,
            (str(user_id), max(1, limit)),
        ).fetchall()
        return [
            HistoryEntry(
                session_id=str(row["session_id"]),
                added_at=str(row["added_at"]),
                last_access_at=str(row["last_access_at"]),
            )
            for row in rows
        ]

    def _add_to_history(self, user_key: str, session_id: str) -> bool:
        exists = self._conn.execute(
            "SELECT 1 FROM session_history WHERE user_id = ? AND session_id = ? LIMIT 1",
            (user_key, session_id),
        ).fetchone()
        if exists is not None:
            return False

        now = utc_now()
        next_seq = self._next_value(user_key, "seq")
        next_access = self._next_value(user_key, "access_seq")
        self._conn.execute(
            """
            INSERT INTO session_history (user_id, session_id, seq, access_seq, added_at, last_access_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_key, session_id, next_seq, next_access, now, now),
        )

        overflow = self._conn.execute(
            """
            SELECT session_id
            FROM session_history
            WHERE user_id = ?
            ORDER BY seq DESC
            LIMIT -1 OFFSET ?
            """,
            (user_key, self._history_limit),
        ).fetchall()
        if overflow:
            self._conn.executemany(
                "DELETE FROM session_history WHERE user_id = ? AND session_id = ?",
                [(user_key, str(row["session_id"])) for row in overflow],
            )
            logger.debug(f"Evicted {len(overflow)} old session id(s) from the history of user {user_key}")
        return True

    def _touch(self, user_key: str, session_id: str) -> None:
        self._conn.execute(
            """
            UPDATE session_history
            SET last_access_at = ?, access_seq = ?
            WHERE user_id = ? AND session_id = ?
            """,
            (utc_now(), self._next_value(user_key, "access_seq"), user_key, session_id),
        )

    def _next_value(self, user_key: str, column: str) -> int:
        row = self._conn.execute(
            f"SELECT COALESCE(MAX({column}), 0) + 1 AS next FROM session_history WHERE user_id = ?",
            (user_key,),
        ).fetchone()
        return int(row["next"])

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS user_sessions (
                user_id TEXT PRIMARY KEY,
                current_session_id TEXT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS session_history (
                user_id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                seq INTEGER NOT NULL,
                access_seq INTEGER NOT NULL,
                added_at TEXT NOT NULL,
                last_access_at TEXT NOT NULL,
                PRIMARY KEY (user_id, session_id)
            );

            CREATE INDEX IF NOT EXISTS idx_session_history_user_seq
                ON session_history(user_id, seq);
            CREATE INDEX IF NOT EXISTS idx_session_history_user_access
                ON session_history(user_id, access_seq);
            """
        )
        self._conn.commit()
