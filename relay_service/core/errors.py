from typing import Any, Dict, Optional, Sequence


class RelayError(Exception):
    """Base class for errors surfaced by the orchestration engine."""


class ConfigError(RelayError):
    """The caller's request is invalid; raised before any upstream call."""


class TransportError(RelayError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def upstream_message(self) -> Optional[str]:
        if isinstance(self.body, dict):
            err = self.body.get("error")
            if isinstance(err, dict):
                return err.get("message")
        return None


class MalformedEventError(RelayError):
    """A stream record whose payload is not valid JSON. Logged, never raised."""

    def __init__(self, raw: str, reason: str):
        super().__init__(f"malformed stream record ({reason}): {raw[:100]!r}")
        self.raw = raw
        self.reason = reason


class ToolLoopFault(RelayError):
    """Fatal to the current orchestration; carries the rounds completed so far."""

    def __init__(self, message: str, rounds: Sequence[Any] = ()):
        super().__init__(message)
        self.rounds = tuple(rounds)

    @property
    def transcript(self) -> list:
        out = []
        for r in self.rounds:
            out.append(r.assistant_wire())
            out.append(r.results_wire())
        return out


class RoundLimitExceeded(ToolLoopFault):
    def __init__(self, max_rounds: int, rounds: Sequence[Any] = ()):
        super().__init__(f"Tool loop exceeded the limit of {max_rounds} rounds", rounds)
        self.max_rounds = max_rounds


class SessionBusyError(RelayError):
    """Another orchestration is still in flight for this session."""


class SessionNotFoundError(RelayError):
    pass


class OrchestrationCancelled(RelayError):
    pass


def http_status(exc: BaseException) -> int:
    if isinstance(exc, ConfigError):
        return 400
    if isinstance(exc, SessionNotFoundError):
        return 404
    if isinstance(exc, SessionBusyError):
        return 409
    if isinstance(exc, TransportError):
        return exc.status_code if exc.status_code and exc.status_code >= 400 else 502
    if isinstance(exc, ToolLoopFault):
        return 508
    if isinstance(exc, OrchestrationCancelled):
        return 499
    return 500


def describe_error(exc: BaseException) -> Dict[str, Any]:
    """JSON-safe error body shared by HTTP responses and NDJSON error events."""
    out: Dict[str, Any] = {"kind": type(exc).__name__, "message": str(exc), "status": http_status(exc)}
    if isinstance(exc, TransportError):
        out["upstream_status"] = exc.status_code
        out["upstream_message"] = exc.upstream_message
    if isinstance(exc, ToolLoopFault):
        out["transcript"] = exc.transcript
        out["rounds"] = len(exc.rounds)
    if isinstance(exc, RoundLimitExceeded):
        out["max_rounds"] = exc.max_rounds
    return out
