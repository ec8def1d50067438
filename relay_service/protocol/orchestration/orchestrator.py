import asyncio
from enum import StrEnum
from typing import Dict, Iterable, List, Optional

from relay_service.core.errors import (
    OrchestrationCancelled,
    RoundLimitExceeded,
    TransportError,
)
from relay_service.core.interfaces import ToolExecutor, Transport
from relay_service.core.logging import logger
from relay_service.core.types import (
    TOOL_USE_STOP_REASON,
    BlockDelta,
    DeltaType,
    Message,
    OrchestrationOutcome,
    RequestConfig,
    StreamError,
    StreamEvent,
    ToolExecutionResult,
    ToolResultBlock,
    ToolRound,
    ToolUseBlock,
)
from relay_service.protocol.assembly.assembler import MessageAssembler
from relay_service.protocol.orchestration.emitter import ProgressSink
from relay_service.protocol.orchestration.tool_runner import output_ok
from relay_service.protocol.parsers.sse import SseDecoder

DEFAULT_MAX_ROUNDS = 25

# Tools the upstream service runs itself; never dispatched to the client executor.
SERVER_TOOL_NAMES = frozenset(
    {
        "web_search",
        "web_fetch",
        "code_execution",
        "bash_code_execution",
        "text_editor_code_execution",
    }
)


class OrchestrationState(StrEnum):
    IDLE = "idle"
    SENDING = "sending"
    ASSEMBLING = "assembling"
    EVALUATING_STOP = "evaluating_stop"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    FAILED = "failed"


class ToolExecutionOrchestrator:
    """
    Multi-round tool loop for one orchestration call.

    Each round sends the current config, assembles the reply and, while the model
    stops for client tools, runs them (concurrently, joined before moving on) and
    sends a follow-up carrying the assistant turn verbatim plus the tool results.
    Rounds are capped; the cap raises RoundLimitExceeded with the finished rounds.
    """

    def __init__(
        self,
        transport: Transport,
        tool_executor: ToolExecutor,
        headers: Optional[Dict[str, str]] = None,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        server_tools: Optional[Iterable[str]] = None,
        progress: Optional[ProgressSink] = None,
    ):
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.transport = transport
        self.tool_executor = tool_executor
        self.headers = dict(headers or {})
        self.max_rounds = max_rounds
        self.server_tools = frozenset(server_tools) if server_tools is not None else SERVER_TOOL_NAMES
        self.progress = progress or ProgressSink()
        self.state = OrchestrationState.IDLE
        self.malformed_events = 0

    async def orchestrate(
        self,
        config: RequestConfig,
        stream: bool = False,
        cancel: Optional[asyncio.Event] = None,
        allow_partial: bool = False,
    ) -> OrchestrationOutcome:
        config.validate()
        self.state = OrchestrationState.IDLE
        rounds: List[ToolRound] = []
        current = config

        try:
            for round_no in range(1, self.max_rounds + 1):
                if cancel is not None and cancel.is_set():
                    raise OrchestrationCancelled("Orchestration cancelled before sending")

                self.state = OrchestrationState.SENDING
                self._notify("status", "Sending request..." if round_no == 1 else "Getting final response...")
                logger.info(f"Round {round_no}/{self.max_rounds}: model={current.model}, messages={len(current.messages)}, stream={stream}")
                message = await self._send(current, stream, cancel, allow_partial)

                self.state = OrchestrationState.EVALUATING_STOP
                logger.info(f"Round {round_no}: stop_reason={message.stop_reason}, complete={message.complete}")
                tool_uses = self._client_tool_uses(message, current)
                if not tool_uses:
                    return self._finish(message, rounds, config, round_no)

                if round_no == self.max_rounds:
                    logger.error(f"Round limit {self.max_rounds} reached with tools still requested")
                    raise RoundLimitExceeded(self.max_rounds, rounds)

                self.state = OrchestrationState.EXECUTING_TOOLS
                self._notify("status", "Executing tools...")
                results, executions = await self._execute_tools(tool_uses)
                tool_round = ToolRound(assistant=message, results=tuple(results), executions=tuple(executions))
                rounds.append(tool_round)
                current = current.with_messages(tool_round.assistant_wire(), tool_round.results_wire())

            # unreachable: the last round either finishes or raises
            raise RoundLimitExceeded(self.max_rounds, rounds)
        except BaseException:
            self.state = OrchestrationState.FAILED
            raise

    def _client_tool_uses(self, message: Message, config: RequestConfig) -> List[ToolUseBlock]:
        if not message.complete:
            return []
        if message.stop_reason != TOOL_USE_STOP_REASON or not config.tools:
            return []
        uses = [b for b in message.tool_uses() if b.name not in self.server_tools]
        if not uses:
            logger.info("Only server-side tools requested; nothing to run client-side")
        return uses

    def _finish(self, message: Message, rounds: List[ToolRound], config: RequestConfig, round_no: int) -> OrchestrationOutcome:
        self.state = OrchestrationState.DONE
        return OrchestrationOutcome(final_message=message, rounds=tuple(rounds), config=config, round_count=round_no)

    async def _send(
        self, config: RequestConfig, stream: bool, cancel: Optional[asyncio.Event], allow_partial: bool
    ) -> Message:
        try:
            if not stream:
                message = await self.transport.send_atomic(config, self.headers)
                self.state = OrchestrationState.ASSEMBLING
                return message
            return await self._receive_stream(config, cancel, allow_partial)
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise TransportError(f"Upstream request timed out: {e}") from e

    async def _receive_stream(
        self, config: RequestConfig, cancel: Optional[asyncio.Event], allow_partial: bool
    ) -> Message:
        decoder = SseDecoder()
        assembler = MessageAssembler()
        chunks = self.transport.send_streaming(config, self.headers)
        self.state = OrchestrationState.ASSEMBLING
        try:
            async for chunk in chunks:
                if cancel is not None and cancel.is_set():
                    decoder.reset()
                    if allow_partial:
                        logger.info("Stream cancelled; returning partial message")
                        return assembler.result()
                    raise OrchestrationCancelled("Orchestration cancelled mid-stream")
                for event in decoder.feed(chunk):
                    self._observe(event)
                    assembler.feed(event)
            for event in decoder.finalize():
                self._observe(event)
                assembler.feed(event)
        finally:
            self.malformed_events += decoder.malformed_count
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

        message = assembler.result()
        if not message.complete:
            logger.warning("Stream ended before message_stop; result is partial")
        return message

    def _observe(self, event: StreamEvent) -> None:
        if isinstance(event, StreamError):
            err = event.error
            raise TransportError(f"Upstream stream error: {err.get('message', err.get('type', 'unknown'))}", body={"error": err})
        if isinstance(event, BlockDelta) and event.value:
            if event.delta_type == DeltaType.TEXT:
                self._notify("text", event.value)
            elif event.delta_type == DeltaType.THINKING:
                self._notify("thinking", event.value)

    async def _execute_tools(self, tool_uses: List[ToolUseBlock]):
        for block in tool_uses:
            self._notify("tool_started", block)

        outputs = await asyncio.gather(*(self.tool_executor.execute(b.name, b.input) for b in tool_uses))

        results: List[ToolResultBlock] = []
        executions: List[ToolExecutionResult] = []
        # gather keeps submission order, so results line up with the tool_use blocks
        for block, output in zip(tool_uses, outputs):
            ok = output_ok(output)
            execution = ToolExecutionResult(tool_use_id=block.id, name=block.name, input=block.input, output=output, ok=ok)
            executions.append(execution)
            results.append(ToolResultBlock(tool_use_id=block.id, content=output, is_error=not ok))
            logger.info(f"Tool {block.name} ({block.id}) finished ok={ok}")
            self._notify("tool_completed", execution)
        return results, executions

    def _notify(self, kind: str, payload) -> None:
        # progress is advisory; a failing sink must not change the outcome
        try:
            getattr(self.progress, kind)(payload)
        except Exception:
            logger.exception(f"Progress sink failed on {kind}")
