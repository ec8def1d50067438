import time
import uuid
from typing import Callable, List, Optional, Sequence, Tuple, Union

from relay_service.core.types import (
    ContentBlock,
    ConversationTurn,
    OrchestrationOutcome,
    Role,
    WireMessage,
    blocks_from_content,
)


def _new_turn_id() -> str:
    return f"msg-{uuid.uuid4().hex}"


class ConversationHistoryReducer:
    """
    Folds a finished orchestration into transcript turns.

    Which turns get appended depends only on the outcome: the prompt turn (when
    given), every intermediate tool-use/tool-result pair, then the final
    assistant turn if its text is non-empty. Timestamps and ids are the only
    values that vary between calls.
    """

    def __init__(self, clock: Callable[[], float] = time.time, id_factory: Callable[[], str] = _new_turn_id):
        self.clock = clock
        self.id_factory = id_factory

    def _turn(self, role: Role, content: Union[str, Tuple[ContentBlock, ...]]) -> ConversationTurn:
        return ConversationTurn(role=role, content=content, timestamp=self.clock(), id=self.id_factory())

    def fold(self, outcome: OrchestrationOutcome, prompt: Optional[WireMessage] = None) -> List[ConversationTurn]:
        """The suffix to append for this outcome. Partial results append nothing."""
        if outcome.partial:
            return []

        turns: List[ConversationTurn] = []
        if prompt is not None:
            content = prompt.get("content", "")
            turns.append(self._turn(Role.USER, content if isinstance(content, str) else blocks_from_content(content)))

        for r in outcome.rounds:
            turns.append(self._turn(Role.ASSISTANT, r.assistant.content))
            turns.append(self._turn(Role.USER, r.results))

        final = outcome.final_message
        if final.text:
            turns.append(self._turn(Role.ASSISTANT, final.content))
        return turns

    def reduce(
        self,
        transcript: Sequence[ConversationTurn],
        outcome: OrchestrationOutcome,
        prompt: Optional[WireMessage] = None,
    ) -> Tuple[ConversationTurn, ...]:
        return tuple(transcript) + tuple(self.fold(outcome, prompt))


def messages_for_request(transcript: Sequence[ConversationTurn]) -> List[WireMessage]:
    """Derive the next request's message list from a transcript."""
    return [turn.to_wire() for turn in transcript]


def visible_turns(transcript: Sequence[ConversationTurn]) -> List[ConversationTurn]:
    """Turns worth showing a person; tool-result user turns are API plumbing."""
    return [t for t in transcript if not t.is_tool_result]
