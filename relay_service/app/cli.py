"""
A CLI for interacting with the relay service.
"""
import json
import os
from typing import Any, Dict, List, Optional

import requests
import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.prompt import Prompt
from rich.spinner import Spinner
from rich.table import Table
from rich.text import Text

# --- Configuration ---
load_dotenv()
API_BASE_URL = os.environ.get("RELAY_API_URL", "http://127.0.0.1:8080/api/v1")


# --- Rich Console Initialization ---
console = Console()
app = typer.Typer(
    name="relay-cli",
    help="A CLI for interacting with the relay service.",
    add_completion=False,
)


# --- API Interaction Functions ---

def _fail(action: str, e: requests.RequestException):
    console.print(f"[bold red]Error:[/bold red] Could not {action} at {API_BASE_URL}.")
    console.print("Please ensure the relay service is running: [bold]python -m relay_service.app[/bold]")
    console.print(f"Details: {e}")
    raise typer.Exit(1)


def get_sessions() -> list:
    """Fetches the list of sessions."""
    try:
        response = requests.get(f"{API_BASE_URL}/sessions")
        response.raise_for_status()
        return response.json()
    except requests.RequestException as e:
        _fail("list sessions", e)


def create_session() -> str:
    """Creates a new session and returns its ID."""
    try:
        response = requests.post(f"{API_BASE_URL}/sessions")
        response.raise_for_status()
    except requests.RequestException as e:
        _fail("create a session", e)
    session_id = response.json().get("session_id")
    console.print(f"✅ New session created: [yellow]{session_id}[/yellow]")
    return session_id


def get_session_history(session_id: str) -> list:
    try:
        response = requests.get(f"{API_BASE_URL}/sessions/{session_id}/messages")
        response.raise_for_status()
        return response.json()
    except requests.RequestException as e:
        console.print(f"[bold red]Error fetching messages for session {session_id}:[/bold red] {e}")
        return []


def display_transcript(turns: list):
    """Renders the visible turns of a session."""
    if not turns:
        return
    for turn in turns:
        if turn.get("role") == "user":
            console.print(Panel(Text(turn.get("text", ""), style="cyan"), title="You", title_align="left", border_style="cyan"))
            continue
        for block in turn.get("content") or []:
            if isinstance(block, dict) and block.get("type") == "tool_use":
                body = f"Tool: {block.get('name')}\nArgs: {json.dumps(block.get('input'))}"
                console.print(Panel(Text(body, style="yellow"), title="Assistant (Tool Call)", title_align="left", border_style="yellow"))
        if turn.get("text"):
            console.print(Panel(Text(turn["text"], style="green"), title="Assistant", title_align="left", border_style="green"))
    console.print()


class StreamPrinter:
    """Prints NDJSON chat events as they arrive."""

    def __init__(self, show_thinking: bool = True, debug: bool = False):
        self.show_thinking = show_thinking
        self.debug = debug
        self.text_started = False
        self.thinking_started = False
        self.final: Optional[Dict[str, Any]] = None

    def _newline(self):
        if self.text_started or self.thinking_started:
            console.print()
            self.text_started = self.thinking_started = False

    def handle(self, event: Dict[str, Any]):
        evt_type = event.get("type")
        data = event.get("data", {})
        if self.debug:
            console.print(f"[dim]Received event: {event}[/dim]")

        if evt_type == "status" and self.debug:
            console.print(f"[dim]{data.get('message')}[/dim]")
        elif evt_type == "text":
            if not self.text_started:
                console.print("\n[bold green]Assistant:[/bold green]")
                self.text_started = True
            console.print(data.get("delta", ""), end="", style="green")
        elif evt_type == "thinking" and self.show_thinking:
            if not self.thinking_started:
                console.print("\n[dim italic]💭 Thinking:[/dim italic]")
                self.thinking_started = True
            console.print(data.get("delta", ""), end="", style="dim italic")
        elif evt_type == "tool_started":
            self._newline()
            console.print(Panel(f"Calling tool: [bold yellow]{data.get('tool_name')}[/bold yellow]", expand=False, border_style="yellow"))
        elif evt_type == "tool_completed":
            style = "dim yellow" if data.get("ok") else "red"
            output = str(data.get("tool_result"))
            console.print(Panel(f"Tool [bold yellow]{data.get('tool_name')}[/bold yellow] output: {output[:150]}", title="Tool Output", expand=False, border_style=style))
        elif evt_type == "message":
            self.final = data
            if data.get("partial"):
                self._newline()
                console.print("[yellow]Response was cut short; nothing was added to the session.[/yellow]")
        elif evt_type == "error":
            self._newline()
            console.print(Panel(f"{data.get('kind')}: {data.get('message')}", title="Error", border_style="bold red"))
        elif evt_type == "done":
            self._newline()


def stream_chat(session_id: str, prompt: str, model: Optional[str], printer: StreamPrinter):
    payload: Dict[str, Any] = {"session_id": session_id, "prompt": prompt}
    if model:
        payload["model"] = model
    with requests.post(f"{API_BASE_URL}/chat/stream", json=payload, stream=True) as response:
        response.raise_for_status()
        with Live(Spinner("dots", text="[dim]Waiting for response...[/dim]"), console=console, refresh_per_second=10) as live:
            spinner_active = True
            for line in response.iter_lines():
                if spinner_active:
                    live.stop()
                    spinner_active = False
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    if printer.debug:
                        console.print(f"[red]Error parsing JSON: {line.decode('utf-8', errors='replace')}[/red]")
                    continue
                printer.handle(event)


# --- Commands ---

@app.command()
def sessions(
    delete: Optional[str] = typer.Option(None, "--delete", "-d", help="Delete the session with this id."),
    delete_all: bool = typer.Option(False, "--delete-all", help="Delete every session."),
):
    """List sessions, or delete one or all of them."""
    try:
        if delete:
            requests.delete(f"{API_BASE_URL}/sessions/{delete}").raise_for_status()
            console.print(f"✅ Session {delete} deleted.")
            return
        if delete_all:
            response = requests.delete(f"{API_BASE_URL}/sessions")
            response.raise_for_status()
            console.print(f"✅ Deleted {response.json().get('deleted_count', 0)} sessions.")
            return
    except requests.RequestException as e:
        _fail("delete sessions", e)

    rows = get_sessions()
    table = Table(title="Sessions", border_style="blue")
    table.add_column("Session id", style="yellow")
    table.add_column("Created")
    table.add_column("Turns", justify="right")
    for s in rows:
        table.add_row(s.get("session_id", "N/A"), s.get("created_at", "N/A"), str(s.get("turns", 0)))
    console.print(table)


@app.command()
def chat(
    session_id: Optional[str] = typer.Option(None, "--session", "-s", help="Resume this session instead of creating one."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model id; the server default is used when omitted."),
    debug: bool = typer.Option(False, "--debug", help="Show every received event."),
    show_thinking: bool = typer.Option(True, "--show-thinking/--hide-thinking", help="Show the model's thinking."),
):
    """Chat interactively, streaming tool calls and text as they happen."""
    if session_id:
        console.print(f"✅ Resuming session: [yellow]{session_id}[/yellow]")
        display_transcript(get_session_history(session_id))
    else:
        session_id = create_session()

    console.print("Type [bold cyan]\\exit[/bold cyan] or [bold cyan]\\quit[/bold cyan] to end, [bold cyan]\\thinking[/bold cyan] to toggle thinking")
    printer = StreamPrinter(show_thinking=show_thinking, debug=debug)
    while True:
        user_prompt = Prompt.ask("[bold cyan]You[/bold cyan]")
        stripped = user_prompt.strip().lower()
        if stripped in ("\\exit", "\\quit"):
            console.print("👋 Goodbye!")
            break
        if stripped == "\\thinking":
            printer.show_thinking = not printer.show_thinking
            console.print(f"Show thinking is now {'enabled' if printer.show_thinking else 'disabled'}.")
            continue
        if not stripped:
            continue
        try:
            stream_chat(session_id, user_prompt, model, printer)
        except requests.RequestException as e:
            console.print(f"\n[bold red]Error:[/bold red] Could not get response from server. {e}")
        finally:
            console.rule()


@app.command()
def history(
    clear: bool = typer.Option(False, "--clear", help="Delete all recorded requests."),
    delete: Optional[str] = typer.Option(None, "--delete", "-d", help="Delete one entry by id."),
    limit: int = typer.Option(20, "--limit", "-n", help="Show at most this many entries."),
):
    """Show recorded requests, most recent first."""
    try:
        if clear:
            requests.delete(f"{API_BASE_URL}/history").raise_for_status()
            console.print("✅ History cleared.")
            return
        if delete:
            requests.delete(f"{API_BASE_URL}/history/{delete}").raise_for_status()
            console.print(f"✅ Entry {delete} deleted.")
            return
        response = requests.get(f"{API_BASE_URL}/history")
        response.raise_for_status()
    except requests.RequestException as e:
        _fail("reach history", e)

    entries: List[Dict[str, Any]] = response.json()[:limit]
    table = Table(title="Request history", border_style="blue")
    table.add_column("Id", style="yellow")
    table.add_column("When")
    table.add_column("Model")
    table.add_column("Prompt")
    table.add_column("Tokens in/out", justify="right")
    for e in entries:
        usage = e.get("token_usage") or {}
        tokens = f"{usage.get('input_tokens', '-')}/{usage.get('output_tokens', '-')}"
        table.add_row(e.get("id", "")[:8], e.get("timestamp", ""), e.get("model") or "", e.get("prompt", ""), tokens)
    console.print(table)


if __name__ == "__main__":
    app()
