from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from relay_service.core.types import ConversationTurn, Message, RequestConfig


class Transport(ABC):
    @abstractmethod
    async def send_atomic(self, config: RequestConfig, headers: Dict[str, str]) -> Message:
        """Send one non-streaming request and return the normalized message."""
        ...

    @abstractmethod
    def send_streaming(self, config: RequestConfig, headers: Dict[str, str]) -> AsyncIterator[bytes]:
        """Send one streaming request and yield raw body chunks as they arrive."""
        ...

    @abstractmethod
    async def count_tokens(self, config: RequestConfig, headers: Dict[str, str]) -> int:
        """Return the upstream's input-token estimate for a request."""
        ...


class StreamParser(ABC):
    @abstractmethod
    def feed(self, chunk: bytes | str) -> List[Any]:
        """Ingest a raw transport chunk and return zero or more protocol events"""
        ...

    @abstractmethod
    def finalize(self) -> List[Any]:
        """Flush any residual state and return final protocol events"""
        ...


class ToolExecutor(ABC):
    @abstractmethod
    async def execute(self, name: str, input: Any) -> str:
        """Run a client tool. Never raises: failures come back as a JSON error payload."""
        ...


class Tool(ABC):
    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def schema(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def run(self, **kwargs: Any) -> Any:
        ...


class SessionStore(ABC):
    @abstractmethod
    async def create_session(self, session_id: str, created_at: int) -> Any:
        """Create a new session."""
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[Any]:
        """Return the live session object, or None."""
        ...

    @abstractmethod
    async def list_sessions(self) -> List[Dict[str, Any]]:
        """List all sessions."""
        ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        """Delete a session by ID. Returns True if deleted, False if not found."""
        ...

    @abstractmethod
    async def delete_all_sessions(self) -> int:
        """Delete all sessions and return the count of deleted sessions."""
        ...

    @abstractmethod
    async def append_turns(
        self, session: Any, turns: Sequence[ConversationTurn], expected_length: Optional[int] = None
    ) -> None:
        ...


class HistoryStorage(ABC):
    @abstractmethod
    async def append(self, entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def list(self) -> List[Dict[str, Any]]:
        """Entries, most recent first."""
        ...

    @abstractmethod
    async def delete(self, entry_id: str) -> bool:
        ...

    @abstractmethod
    async def clear(self) -> None:
        ...
