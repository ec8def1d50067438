"""Session value object: an append-only transcript plus the one-in-flight guard."""
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from relay_service.core.errors import SessionBusyError
from relay_service.core.types import ConversationTurn


class Session:
    def __init__(self, session_id: str, created_at: str, turns: Sequence[ConversationTurn] = ()):
        self.id = session_id
        self.created_at = created_at
        self._turns: Tuple[ConversationTurn, ...] = tuple(turns)
        self._in_flight = False

    @property
    def transcript(self) -> Tuple[ConversationTurn, ...]:
        return self._turns

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def append(self, turns: Sequence[ConversationTurn], expected_length: Optional[int] = None) -> None:
        """Compare-and-append. Readers see either the old or the new tuple, never a half-written one."""
        if expected_length is not None and len(self._turns) != expected_length:
            raise SessionBusyError(
                f"Transcript for session {self.id} changed during orchestration "
                f"(expected {expected_length} turns, found {len(self._turns)})"
            )
        self._turns = self._turns + tuple(turns)

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator["Session"]:
        # no await between the check and the set, so this is atomic on the event loop
        if self._in_flight:
            raise SessionBusyError(f"Session {self.id} already has a request in flight")
        self._in_flight = True
        try:
            yield self
        finally:
            self._in_flight = False

    def summary(self) -> Dict[str, Any]:
        return {"session_id": self.id, "created_at": self.created_at, "turns": len(self._turns)}
