import requests
from typer.testing import CliRunner

from relay_service.app import cli

runner = CliRunner()


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_sessions_lists_table(monkeypatch):
    rows = [{"session_id": "abc123", "created_at": "2024-01-01T00:00:00", "turns": 4}]
    monkeypatch.setattr(cli.requests, "get", lambda url: FakeResponse(rows))
    result = runner.invoke(cli.app, ["sessions"])
    assert result.exit_code == 0
    assert "abc123" in result.output


def test_sessions_delete_all(monkeypatch):
    monkeypatch.setattr(cli.requests, "delete", lambda url: FakeResponse({"deleted_count": 2}))
    result = runner.invoke(cli.app, ["sessions", "--delete-all"])
    assert result.exit_code == 0
    assert "Deleted 2 sessions" in result.output


def test_unreachable_server_exits_with_error(monkeypatch):
    def refuse(url):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(cli.requests, "get", refuse)
    result = runner.invoke(cli.app, ["history"])
    assert result.exit_code == 1
    assert "Could not reach history" in result.output


def test_history_table(monkeypatch):
    entries = [
        {
            "id": "0123456789abcdef",
            "timestamp": "2024-01-01T00:00:00",
            "model": "claude-test",
            "prompt": "hello",
            "token_usage": {"input_tokens": 5, "output_tokens": 2},
        }
    ]
    monkeypatch.setattr(cli.requests, "get", lambda url: FakeResponse(entries))
    result = runner.invoke(cli.app, ["history"])
    assert result.exit_code == 0
    assert "01234567" in result.output
    assert "5/2" in result.output


def test_stream_printer_tracks_final_message():
    printer = cli.StreamPrinter(show_thinking=False)
    printer.handle({"type": "thinking", "data": {"delta": "hmm"}})
    assert printer.thinking_started is False
    printer.handle({"type": "text", "data": {"delta": "Hi"}})
    assert printer.text_started is True
    printer.handle({"type": "message", "data": {"text": "Hi", "partial": False}})
    printer.handle({"type": "done", "data": {}})
    assert printer.final == {"text": "Hi", "partial": False}
    assert printer.text_started is False
