import asyncio
import time
import uuid
from contextlib import suppress
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional, Sequence

from relay_service.context.history_store import build_history_entry
from relay_service.core.errors import RelayError, SessionNotFoundError, describe_error
from relay_service.core.interfaces import HistoryStorage, SessionStore, Tool, Transport
from relay_service.core.logging import logger
from relay_service.core.types import OrchestrationOutcome, RequestConfig, ThinkingOptions, ToolDescriptor
from relay_service.protocol.orchestration.emitter import NdjsonEmitter, ProgressSink, QueueProgressSink
from relay_service.protocol.orchestration.history import (
    ConversationHistoryReducer,
    messages_for_request,
    visible_turns,
)
from relay_service.protocol.orchestration.orchestrator import DEFAULT_MAX_ROUNDS, ToolExecutionOrchestrator
from relay_service.protocol.orchestration.tool_runner import ToolRunner
from relay_service.protocol.request import DEFAULT_VERSION, build_body, build_headers, user_message


class GenerationService:
    def __init__(
        self,
        transport: Transport,
        session_store: SessionStore,
        tools: Dict[str, Tool],
        history_store: Optional[HistoryStorage] = None,
        api_key: Optional[str] = None,
        version: str = DEFAULT_VERSION,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        tool_timeout: Optional[float] = None,
        server_tools: Optional[Iterable[str]] = None,
        default_model: Optional[str] = None,
        default_max_tokens: int = 1024,
        system_prompt: str = "",
    ):
        """Initialize with transport, session store, tools registry and request defaults"""
        self.transport = transport
        self.store = session_store
        self.tools = tools
        self.history = history_store
        self.api_key = api_key
        self.version = version
        self.max_rounds = max_rounds
        self.tool_timeout = tool_timeout
        self.server_tools = list(server_tools) if server_tools is not None else None
        self.default_model = default_model
        self.default_max_tokens = default_max_tokens
        self.system_prompt = system_prompt
        self.reducer = ConversationHistoryReducer()

    # --- Generation ---

    def _build_config(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str],
        system: Optional[str],
        max_tokens: Optional[int],
        temperature: float,
        top_p: float,
        top_k: int,
        thinking: Optional[Dict[str, Any]],
        tool_names: Optional[Sequence[str]],
        server_tools: Sequence[Dict[str, Any]],
        output_format: Optional[Dict[str, Any]],
        container: Optional[Dict[str, Any]],
        betas: Sequence[str],
    ) -> RequestConfig:
        selected = self.tools if tool_names is None else {n: t for n, t in self.tools.items() if n in tool_names}
        descriptors = [ToolDescriptor.from_dict(t.schema) for t in selected.values()]
        descriptors += [ToolDescriptor.from_dict(s) for s in server_tools]
        return RequestConfig(
            model=model or self.default_model or "",
            messages=tuple(messages),
            max_tokens=max_tokens if max_tokens is not None else self.default_max_tokens,
            system=self.system_prompt if system is None else system,
            temperature=temperature,
            top_p=top_p,
            top_k=top_k,
            tools=tuple(descriptors),
            thinking=ThinkingOptions(**thinking) if thinking else None,
            output_format=output_format,
            container=container,
            betas=tuple(betas),
        )

    async def chat(
        self,
        session_id: str,
        prompt: str,
        model: Optional[str] = None,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 1.0,
        top_p: float = 1.0,
        top_k: int = 0,
        thinking: Optional[Dict[str, Any]] = None,
        images: Sequence[Dict[str, Any]] = (),
        tools: Optional[Sequence[str]] = None,
        server_tools: Sequence[Dict[str, Any]] = (),
        output_format: Optional[Dict[str, Any]] = None,
        container: Optional[Dict[str, Any]] = None,
        betas: Sequence[str] = (),
        api_key: Optional[str] = None,
        stream: bool = False,
        progress: Optional[ProgressSink] = None,
        cancel: Optional[asyncio.Event] = None,
        allow_partial: bool = False,
    ) -> Dict[str, Any]:
        """
        Continue a session with one user prompt and run the tool loop to completion.

        The transcript is only extended after the whole orchestration succeeds;
        any error leaves it exactly as it was.

        Args:
            session_id: Session to continue
            prompt: The user's text
            tools: Names of registered client tools to offer; None offers all of them
            server_tools: Raw server tool definitions, e.g. {"type": "web_search_20250305", "name": "web_search"}
            stream: Use the streaming transport and report deltas to progress
            cancel: Set to stop the orchestration between rounds or chunks
            allow_partial: Return the partial message on cancellation instead of raising
        """
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")

        async with session.exclusive():
            expected = len(session.transcript)
            prompt_msg = user_message(prompt, images)
            config = self._build_config(
                messages_for_request(session.transcript) + [prompt_msg],
                model, system, max_tokens, temperature, top_p, top_k, thinking,
                tools, server_tools, output_format, container, betas,
            )
            config.validate()
            headers = build_headers(api_key or self.api_key, self.version, config.betas)

            orchestrator = ToolExecutionOrchestrator(
                transport=self.transport,
                tool_executor=ToolRunner(self.tools, timeout=self.tool_timeout),
                headers=headers,
                max_rounds=self.max_rounds,
                server_tools=self.server_tools,
                progress=progress,
            )
            logger.info(f"chat: session_id={session_id}, model={config.model}, transcript={expected} turns, stream={stream}")
            outcome = await orchestrator.orchestrate(config, stream=stream, cancel=cancel, allow_partial=allow_partial)

            turns = self.reducer.fold(outcome, prompt=prompt_msg)
            if turns:
                await self.store.append_turns(session, turns, expected_length=expected)

        if self.history is not None and not outcome.partial:
            await self.history.append(build_history_entry(build_body(config), outcome.final_message.to_dict()))

        return self._result(session_id, outcome, orchestrator.malformed_events)

    @staticmethod
    def _result(session_id: str, outcome: OrchestrationOutcome, malformed: int) -> Dict[str, Any]:
        final = outcome.final_message
        return {
            "session_id": session_id,
            "message": final.to_dict(),
            "text": final.text,
            "partial": outcome.partial,
            "rounds": outcome.round_count,
            "tool_executions": [
                {"id": e.tool_use_id, "tool_name": e.name, "tool_args": e.input, "tool_result": e.output, "ok": e.ok}
                for e in outcome.executions
            ],
            "malformed_events": malformed,
        }

    async def stream(self, session_id: str, prompt: str, **options: Any) -> AsyncGenerator[bytes, None]:
        """Run chat() with streaming on and yield NDJSON events until a final done event"""
        sink = QueueProgressSink(session_id)
        emitter = NdjsonEmitter()
        cancel = asyncio.Event()
        options.pop("stream", None)

        async def run() -> None:
            try:
                result = await self.chat(session_id, prompt, stream=True, progress=sink, cancel=cancel, **options)
                sink.put("message", result)
            except RelayError as e:
                logger.warning(f"chat failed: session_id={session_id}: {type(e).__name__}: {e}")
                sink.put("error", describe_error(e))
            except Exception as e:
                logger.exception(f"Unexpected error in chat stream: {e}")
                sink.put("error", describe_error(e))
            finally:
                sink.put("done", {})
                sink.close()

        task = asyncio.create_task(run())
        try:
            async for event in sink.events():
                yield emitter.emit(event)
        finally:
            if not task.done():
                cancel.set()
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

    # --- Session Management ---

    async def create_session(self) -> Dict[str, Any]:
        """Creates a new session and returns its details."""
        session_id = str(uuid.uuid4())
        created_at = int(time.time())
        session = await self.store.create_session(session_id, created_at)
        return {"session_id": session.id, "created_at": session.created_at or datetime.fromtimestamp(created_at).isoformat()}

    async def list_sessions(self) -> List[Dict[str, Any]]:
        return await self.store.list_sessions()

    async def get_session_messages(self, session_id: str, visible_only: bool = True) -> List[Dict[str, Any]]:
        """Transcript turns for a session; tool-result turns are hidden unless visible_only is False."""
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        turns = visible_turns(session.transcript) if visible_only else list(session.transcript)
        return [dict(t.to_dict(), text=t.text) for t in turns]

    async def delete_session(self, session_id: str) -> bool:
        return await self.store.delete_session(session_id)

    async def delete_all_sessions(self) -> int:
        return await self.store.delete_all_sessions()

    # --- Tools and history ---

    def list_tools(self) -> List[Dict[str, Any]]:
        return [t.schema for t in self.tools.values()]

    async def list_history(self) -> List[Dict[str, Any]]:
        return await self.history.list() if self.history is not None else []

    async def delete_history_entry(self, entry_id: str) -> bool:
        return await self.history.delete(entry_id) if self.history is not None else False

    async def clear_history(self) -> None:
        if self.history is not None:
            await self.history.clear()
