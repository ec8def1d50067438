"""Async in-memory session store implementing SessionStore"""
import datetime
from typing import Any, Dict, List, Optional, Sequence

from relay_service.context.session import Session
from relay_service.core.errors import SessionBusyError
from relay_service.core.interfaces import SessionStore
from relay_service.core.types import ConversationTurn


class MemoryStore(SessionStore):
    def __init__(self):
        self.sessions: Dict[str, Session] = {}

    async def create_session(self, session_id: str, created_at: int) -> Session:
        session = self.sessions.get(session_id)
        if session is None:
            created = datetime.datetime.fromtimestamp(created_at).isoformat()
            session = self.sessions[session_id] = Session(session_id, created)
        return session

    async def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    async def list_sessions(self) -> List[Dict[str, Any]]:
        ordered = sorted(self.sessions.values(), key=lambda s: s.created_at, reverse=True)
        return [s.summary() for s in ordered]

    async def delete_session(self, session_id: str) -> bool:
        session = self.sessions.get(session_id)
        if session is not None and session.in_flight:
            raise SessionBusyError(f"Session {session_id} has a request in flight and cannot be deleted")
        return self.sessions.pop(session_id, None) is not None

    async def delete_all_sessions(self) -> int:
        count = len(self.sessions)
        self.sessions.clear()
        return count

    async def append_turns(
        self, session: Session, turns: Sequence[ConversationTurn], expected_length: Optional[int] = None
    ) -> None:
        session.append(turns, expected_length)
