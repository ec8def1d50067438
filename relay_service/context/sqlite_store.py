"""SQLite-backed session store implementing SessionStore with WAL + safe PRAGMAs"""
from __future__ import annotations

import datetime
import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from relay_service.context.session import Session
from relay_service.core.errors import SessionBusyError, SessionNotFoundError
from relay_service.core.interfaces import SessionStore
from relay_service.core.types import ConversationTurn, Role, blocks_from_content


class SqliteSessionStore(SessionStore):
    def __init__(self, dsn: str = "sqlite:///./data/relay.db"):
        if dsn.startswith("sqlite:///"):
            path = dsn[len("sqlite:///") :]
        else:
            path = dsn

        if path == ":memory:":
            target = path
        else:
            p = Path(path).expanduser().resolve()
            p.parent.mkdir(parents=True, exist_ok=True)
            target = str(p)

        self.conn = sqlite3.connect(target, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_pragmas()
        self._init_schema()
        # live Session objects, so the in-flight guard is shared by every caller
        self._sessions: Dict[str, Session] = {}

    def _init_pragmas(self) -> None:
        cur = self.conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.execute("PRAGMA foreign_keys=ON;")
        self.conn.commit()

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS turns (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                session_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                ts REAL NOT NULL,
                FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_turns_session ON turns(session_id, seq)")
        self.conn.commit()

    async def create_session(self, session_id: str, created_at: int) -> Session:
        self.conn.execute(
            "INSERT OR IGNORE INTO sessions(id, created_at) VALUES (?, ?)",
            (session_id, datetime.datetime.fromtimestamp(created_at).isoformat()),
        )
        self.conn.commit()
        return await self.get_session(session_id)

    async def get_session(self, session_id: str) -> Optional[Session]:
        cached = self._sessions.get(session_id)
        if cached is not None:
            return cached
        row = self.conn.execute("SELECT id, created_at FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            return None
        session = Session(row["id"], row["created_at"], self._load_turns(session_id))
        self._sessions[session_id] = session
        return session

    def _load_turns(self, session_id: str) -> List[ConversationTurn]:
        rows = self.conn.execute(
            "SELECT id, role, content, ts FROM turns WHERE session_id = ? ORDER BY seq ASC",
            (session_id,),
        ).fetchall()
        turns = []
        for r in rows:
            raw = json.loads(r["content"])
            content = raw if isinstance(raw, str) else blocks_from_content(raw)
            turns.append(ConversationTurn(role=Role(r["role"]), content=content, timestamp=r["ts"], id=r["id"]))
        return turns

    async def list_sessions(self) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            """
            SELECT s.id, s.created_at, COUNT(t.seq) AS turns
            FROM sessions s LEFT JOIN turns t ON t.session_id = s.id
            GROUP BY s.id ORDER BY s.created_at DESC
            """
        ).fetchall()
        return [{"session_id": r["id"], "created_at": r["created_at"], "turns": r["turns"]} for r in rows]

    async def delete_session(self, session_id: str) -> bool:
        live = self._sessions.get(session_id)
        if live is not None and live.in_flight:
            raise SessionBusyError(f"Session {session_id} has a request in flight and cannot be deleted")
        cur = self.conn.cursor()
        cur.execute("DELETE FROM turns WHERE session_id = ?", (session_id,))
        cur.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        deleted_count = cur.rowcount
        self.conn.commit()
        self._sessions.pop(session_id, None)
        return deleted_count > 0

    async def delete_all_sessions(self) -> int:
        cur = self.conn.cursor()
        cur.execute("SELECT COUNT(*) FROM sessions")
        count = cur.fetchone()[0]
        cur.execute("DELETE FROM turns")
        cur.execute("DELETE FROM sessions")
        self.conn.commit()
        self._sessions.clear()
        return count

    async def append_turns(
        self, session: Session, turns: Sequence[ConversationTurn], expected_length: Optional[int] = None
    ) -> None:
        if expected_length is not None and len(session.transcript) != expected_length:
            # let the session raise its own error without touching the database
            session.append(turns, expected_length)
        rows = []
        for t in turns:
            content = t.content if isinstance(t.content, str) else [b.to_dict() for b in t.content]
            rows.append((t.id, session.id, str(t.role), json.dumps(content), t.timestamp))
        try:
            with self.conn:
                self.conn.executemany(
                    "INSERT INTO turns(id, session_id, role, content, ts) VALUES (?, ?, ?, ?, ?)",
                    rows,
                )
        except sqlite3.IntegrityError as e:
            # the session row is gone, e.g. removed by delete_all_sessions mid-request
            raise SessionNotFoundError(f"Session {session.id} no longer exists") from e
        session.append(turns)
