import pytest

from relay_service.core.errors import (
    ConfigError,
    OrchestrationCancelled,
    RelayError,
    RoundLimitExceeded,
    SessionBusyError,
    SessionNotFoundError,
    ToolLoopFault,
    TransportError,
    describe_error,
    http_status,
)


@pytest.mark.parametrize(
    "exc, status",
    [
        (ConfigError("bad"), 400),
        (SessionNotFoundError("gone"), 404),
        (SessionBusyError("busy"), 409),
        (TransportError("overloaded", status_code=529), 529),
        (TransportError("reset"), 502),
        (TransportError("redirect", status_code=302), 502),
        (ToolLoopFault("tool blew up"), 508),
        (RoundLimitExceeded(25), 508),
        (OrchestrationCancelled("stop"), 499),
        (RelayError("other"), 500),
        (RuntimeError("boom"), 500),
    ],
)
def test_http_status(exc, status):
    assert http_status(exc) == status


def test_describe_transport_error():
    body = {"type": "error", "error": {"type": "rate_limit_error", "message": "Slow down"}}
    out = describe_error(TransportError("Slow down", status_code=429, body=body))
    assert out == {
        "kind": "TransportError",
        "message": "Slow down",
        "status": 429,
        "upstream_status": 429,
        "upstream_message": "Slow down",
    }


def test_describe_round_limit():
    out = describe_error(RoundLimitExceeded(3))
    assert out["kind"] == "RoundLimitExceeded"
    assert out["max_rounds"] == 3
    assert out["rounds"] == 0
    assert out["transcript"] == []
    assert "3 rounds" in out["message"]


def test_describe_busy():
    assert describe_error(SessionBusyError("session s1 is busy"))["status"] == 409
