"""Bounded agent loop: query the model, run requested tools, repeat.

One call to ``ConversationEngine.run`` processes one user prompt. The loop
moves between AWAITING_MODEL and EXECUTING_TOOLS until the model answers
without tool calls (COMPLETED) or the iteration cap is hit (ABORTED). All
counters live on the TurnState, and the session itself is never mutated;
the caller commits the TurnResult once the whole prompt succeeded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from models.locator_record import LocatorRecord
from models.model_reply import ModelReply
from models.session_models import Session, SessionMessage, ToolCallBlock, ToolResultBlock
from models.tool_models import ToolDescriptor, ToolResult
from services.agent.locator_extractor import derive_context_updates, extract_locator
from services.agent.prompts import system_prompt
from services.errors import ModelOverloadedError, ModelServiceError, ModelTransientError

LOGGER = logging.getLogger(__name__)

MAX_ITERATIONS = 20
MAX_MODEL_ATTEMPTS = 3
OVERLOAD_BACKOFF_SECONDS = 2.0
RETRY_DELAY_SECONDS = 1.0
COMPLETION_MARKER = "Task completed successfully"
STEP_LIMIT_MARKER = "Stopped after reaching the step limit before the task was finished."

Sleep = Callable[[float], Awaitable[Any]]


class LoopState(str, Enum):
    """Conversation loop states."""

    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class TurnState:
    """Everything one prompt's loop accumulates while it runs."""

    messages: List[SessionMessage]
    state: LoopState = LoopState.AWAITING_MODEL
    iteration: int = 0
    model_failures: int = 0
    tool_invocations: int = 0
    pending_calls: List[ToolCallBlock] = field(default_factory=list)
    response_parts: List[str] = field(default_factory=list)
    locators: List[LocatorRecord] = field(default_factory=list)
    context_updates: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TurnResult:
    """Outcome of one processed prompt, ready to be folded into the session."""

    response_text: str
    messages: List[SessionMessage]
    locators: List[LocatorRecord]
    context_updates: Dict[str, Any]
    iterations: int
    tool_invocations: int
    state: LoopState


def merge_context(target: Dict[str, Any], updates: Dict[str, Any]) -> None:
    """Fold context updates into ``target``; completed actions accumulate."""
    for key, value in updates.items():
        if key == "completed_actions":
            target.setdefault(key, []).extend(value)
        else:
            target[key] = value


class ConversationEngine:
    """Drive the model/tool loop for one prompt at a time."""

    def __init__(
        self,
        model: Any,
        registry: Any,
        *,
        max_iterations: int = MAX_ITERATIONS,
        max_model_attempts: int = MAX_MODEL_ATTEMPTS,
        overload_backoff: float = OVERLOAD_BACKOFF_SECONDS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.model = model
        self.registry = registry
        self.max_iterations = max_iterations
        self.max_model_attempts = max_model_attempts
        self.overload_backoff = overload_backoff
        self.retry_delay = retry_delay
        self._sleep = sleep

    async def run(self, session: Session, prompt: str) -> TurnResult:
        """Process ``prompt`` against ``session`` and return the turn's outcome.

        Raises:
            ModelServiceError: The model could not be reached within the retry
                budget, or rejected the request outright.
        """
        turn = TurnState(messages=[SessionMessage(role="user", content=prompt)])
        system = system_prompt(session)
        tools = self.registry.list_tools()

        while turn.state in (LoopState.AWAITING_MODEL, LoopState.EXECUTING_TOOLS):
            if turn.state is LoopState.AWAITING_MODEL:
                if turn.iteration >= self.max_iterations:
                    LOGGER.warning(
                        "Session %s hit the %d step limit; stopping", session.session_id, self.max_iterations
                    )
                    turn.state = LoopState.ABORTED
                    break
                await self._await_model(turn, session, system, tools)
            else:
                await self._execute_tools(turn)

        return self._result(turn)

    async def _await_model(
        self,
        turn: TurnState,
        session: Session,
        system: str,
        tools: List[ToolDescriptor],
    ) -> None:
        turn.iteration += 1
        LOGGER.info("Automation step %d for session %s", turn.iteration, session.session_id)

        reply = await self._query_model(turn, system, tools, session.messages + turn.messages)
        if reply.text:
            turn.response_parts.append(reply.text)
        blocks = reply.blocks()
        if blocks:
            turn.messages.append(SessionMessage(role="assistant", content=blocks))

        if reply.tool_calls:
            LOGGER.info("Model requested %d tool call(s)", len(reply.tool_calls))
            turn.pending_calls = list(reply.tool_calls)
            turn.state = LoopState.EXECUTING_TOOLS
        else:
            LOGGER.info("Model completed the automation task for session %s", session.session_id)
            turn.state = LoopState.COMPLETED

    async def _query_model(
        self,
        turn: TurnState,
        system: str,
        tools: List[ToolDescriptor],
        history: List[SessionMessage],
    ) -> ModelReply:
        while True:
            try:
                return await self.model.complete(system=system, tools=tools, messages=history)
            except ModelOverloadedError as exc:
                self._record_failure(turn, exc)
                delay = turn.model_failures * self.overload_backoff
                LOGGER.warning(
                    "Model overloaded, retrying in %.0f seconds (%d/%d)",
                    delay,
                    turn.model_failures,
                    self.max_model_attempts,
                )
            except ModelTransientError as exc:
                self._record_failure(turn, exc)
                delay = self.retry_delay
                LOGGER.warning("Retrying model call after error: %s (%d/%d)", exc, turn.model_failures, self.max_model_attempts)
            except ModelServiceError:
                raise
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._record_failure(turn, exc)
                delay = self.retry_delay
                LOGGER.warning("Retrying model call after error: %s (%d/%d)", exc, turn.model_failures, self.max_model_attempts)
            await self._sleep(delay)

    def _record_failure(self, turn: TurnState, exc: Exception) -> None:
        turn.model_failures += 1
        if turn.model_failures >= self.max_model_attempts:
            LOGGER.error("Max retries reached. Model service error: %s", exc)
            status = getattr(exc, "status_code", None)
            raise ModelServiceError(
                f"Model service failed after {turn.model_failures} attempts: {exc}", status_code=status
            ) from exc

    async def _execute_tools(self, turn: TurnState) -> None:
        calls, turn.pending_calls = turn.pending_calls, []
        outcomes = await asyncio.gather(*(self._dispatch(call) for call in calls))

        results: List[ToolResultBlock] = []
        for call, (result, error) in zip(calls, outcomes):
            turn.tool_invocations += 1
            record = extract_locator(call.name, call.arguments, result)
            if record.locator:
                turn.locators.append(record)
            merge_context(turn.context_updates, derive_context_updates(record.action, call.arguments, result))
            results.append(self._result_block(call, result, error))

        turn.messages.append(SessionMessage(role="user", content=results))
        turn.state = LoopState.AWAITING_MODEL

    async def _dispatch(self, call: ToolCallBlock) -> Tuple[Optional[ToolResult], Optional[Exception]]:
        LOGGER.info("Executing: %s", call.name)
        try:
            result = await self.registry.call(call.name, call.arguments)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            LOGGER.warning("Tool error from %s: %s", call.name, exc)
            return None, exc
        LOGGER.info("Tool completed: %s", call.name)
        return result, None

    @staticmethod
    def _result_block(
        call: ToolCallBlock,
        result: Optional[ToolResult],
        error: Optional[Exception],
    ) -> ToolResultBlock:
        if result is None:
            text = f"Error: {error}. Please try alternative approaches or selectors."
            return ToolResultBlock(call_id=call.call_id, content=[{"type": "text", "text": text}], is_error=True)
        return ToolResultBlock(call_id=call.call_id, content=list(result.content), is_error=result.is_error)

    @staticmethod
    def _result(turn: TurnState) -> TurnResult:
        text = "\n\n".join(turn.response_parts)
        if not text:
            text = COMPLETION_MARKER if turn.state is LoopState.COMPLETED else STEP_LIMIT_MARKER
        return TurnResult(
            response_text=text,
            messages=turn.messages,
            locators=turn.locators,
            context_updates=turn.context_updates,
            iterations=turn.iteration,
            tool_invocations=turn.tool_invocations,
            state=turn.state,
        )
