import asyncio

import pytest

from models.model_reply import ModelReply
from models.session_models import Session, SessionMessage, ToolCallBlock, ToolResultBlock
from models.tool_models import ToolDescriptor, ToolResult
from services.agent.conversation_engine import COMPLETION_MARKER, ConversationEngine, LoopState
from services.errors import ModelOverloadedError, ModelServiceError, ModelTransientError, ToolExecutionError


class ScriptedModel:
    """Returns queued replies (or raises queued exceptions) in order."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    async def complete(self, *, system, tools, messages):
        self.calls.append({"system": system, "tools": tools, "messages": list(messages)})
        step = self.script.pop(0) if self.script else ModelReply(text_segments=["done"])
        if isinstance(step, Exception):
            raise step
        return step


class FakeRegistry:
    def __init__(self, outcomes=None):
        self.outcomes = outcomes or {}
        self.calls = []

    def list_tools(self):
        return [ToolDescriptor("playwright_playwright_navigate", "Navigate", {"type": "object"}, "playwright", "playwright_navigate")]

    async def call(self, name, arguments=None):
        self.calls.append((name, arguments))
        await asyncio.sleep(0)
        outcome = self.outcomes.get(name, ToolResult(content=[{"type": "text", "text": f"{name} ok"}]))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def new_session():
    return Session(session_id="s1", created_at=0.0, last_activity=0.0)


def tool_reply(*calls, text=None):
    return ModelReply(
        text_segments=[text] if text else [],
        tool_calls=[ToolCallBlock(call_id=call_id, name=name, arguments=args) for call_id, name, args in calls],
    )


@pytest.mark.asyncio
async def test_reply_without_tool_calls_completes_immediately():
    model = ScriptedModel([ModelReply(text_segments=["Hello there"])])
    engine = ConversationEngine(model, FakeRegistry(), sleep=SleepRecorder())

    result = await engine.run(new_session(), "hi")

    assert result.state is LoopState.COMPLETED
    assert result.response_text == "Hello there"
    assert result.iterations == 1
    assert result.tool_invocations == 0
    assert [m.role for m in result.messages] == ["user", "assistant"]
    assert "NEW session" in model.calls[0]["system"]


@pytest.mark.asyncio
async def test_tool_calls_are_executed_and_results_folded_back():
    model = ScriptedModel(
        [
            tool_reply(
                ("call_1", "playwright_playwright_navigate", {"url": "https://example.com"}),
                ("call_2", "playwright_playwright_click", {"selector": "#more"}),
                text="Opening the page",
            ),
            ModelReply(text_segments=["All done"]),
        ]
    )
    registry = FakeRegistry()
    engine = ConversationEngine(model, registry, sleep=SleepRecorder())

    result = await engine.run(new_session(), "open example.com and click more")

    assert result.state is LoopState.COMPLETED
    assert result.response_text == "Opening the page\n\nAll done"
    assert result.iterations == 2
    assert result.tool_invocations == 2
    assert len(registry.calls) == 2

    tool_turn = result.messages[2]
    assert tool_turn.role == "user"
    assert [block.call_id for block in tool_turn.content] == ["call_1", "call_2"]
    assert all(isinstance(block, ToolResultBlock) and not block.is_error for block in tool_turn.content)

    assert [record.locator for record in result.locators] == ["#more"]
    assert result.context_updates["current_url"] == "https://example.com"
    assert result.context_updates["completed_actions"] == ["navigate", "click"]

    second_call_history = model.calls[1]["messages"]
    assert second_call_history[-1] is tool_turn


@pytest.mark.asyncio
async def test_tool_failure_becomes_error_result_without_stopping_others():
    model = ScriptedModel(
        [
            tool_reply(
                ("call_1", "playwright_playwright_click", {"selector": "#gone"}),
                ("call_2", "custom_echo", {"message": "hi"}),
            ),
            ModelReply(text_segments=["Recovered"]),
        ]
    )
    registry = FakeRegistry(
        {"playwright_playwright_click": ToolExecutionError("playwright_click", {"message": "Element not found"})}
    )
    engine = ConversationEngine(model, registry, sleep=SleepRecorder())

    result = await engine.run(new_session(), "click it")

    failed, succeeded = result.messages[2].content
    assert failed.is_error is True
    assert "Element not found" in failed.content[0]["text"]
    assert succeeded.is_error is False
    assert result.locators[0].locator == "#gone"
    assert result.locators[0].success is False
    assert result.response_text == "Recovered"


@pytest.mark.asyncio
async def test_iteration_cap_aborts_with_non_empty_result():
    looping = [tool_reply((f"call_{i}", "custom_echo", {})) for i in range(50)]
    model = ScriptedModel(looping)
    engine = ConversationEngine(model, FakeRegistry(), sleep=SleepRecorder())

    result = await engine.run(new_session(), "loop forever")

    assert result.state is LoopState.ABORTED
    assert result.iterations == 20
    assert len(model.calls) == 20
    assert result.response_text


@pytest.mark.asyncio
async def test_empty_final_reply_falls_back_to_completion_marker():
    engine = ConversationEngine(ScriptedModel([ModelReply()]), FakeRegistry(), sleep=SleepRecorder())
    result = await engine.run(new_session(), "anything")
    assert result.response_text == COMPLETION_MARKER


@pytest.mark.asyncio
async def test_two_overloads_then_success_fits_retry_budget():
    sleep = SleepRecorder()
    model = ScriptedModel(
        [ModelOverloadedError("overloaded", 529), ModelOverloadedError("overloaded", 529), ModelReply(text_segments=["ok"])]
    )
    engine = ConversationEngine(model, FakeRegistry(), sleep=sleep)

    result = await engine.run(new_session(), "hi")

    assert result.response_text == "ok"
    assert sleep.delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_permanent_overload_exhausts_budget():
    sleep = SleepRecorder()
    model = ScriptedModel([ModelOverloadedError("overloaded", 529) for _ in range(5)])
    engine = ConversationEngine(model, FakeRegistry(), sleep=sleep)

    with pytest.raises(ModelServiceError):
        await engine.run(new_session(), "hi")
    assert len(model.calls) == 3


@pytest.mark.asyncio
async def test_retry_budget_is_shared_across_iterations():
    sleep = SleepRecorder()
    model = ScriptedModel(
        [
            ModelTransientError("reset"),
            tool_reply(("call_1", "custom_echo", {})),
            ModelTransientError("reset"),
            ModelTransientError("reset"),
            ModelReply(text_segments=["never reached"]),
        ]
    )
    engine = ConversationEngine(model, FakeRegistry(), sleep=sleep)

    with pytest.raises(ModelServiceError):
        await engine.run(new_session(), "hi")
    assert sleep.delays == [1.0, 1.0]


@pytest.mark.asyncio
async def test_rejected_request_is_not_retried():
    model = ScriptedModel([ModelServiceError("bad request", 400), ModelReply(text_segments=["unused"])])
    engine = ConversationEngine(model, FakeRegistry(), sleep=SleepRecorder())

    with pytest.raises(ModelServiceError):
        await engine.run(new_session(), "hi")
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_engine_does_not_mutate_the_session():
    session = new_session()
    session.messages.append(SessionMessage(role="user", content="earlier"))
    model = ScriptedModel([tool_reply(("call_1", "custom_echo", {})), ModelReply(text_segments=["fine"])])
    engine = ConversationEngine(model, FakeRegistry(), sleep=SleepRecorder())

    result = await engine.run(session, "again")

    assert len(session.messages) == 1
    assert session.total_steps == 0
    assert "CONTINUING session" in model.calls[0]["system"]
    assert model.calls[0]["messages"][0].content == "earlier"
    assert result.messages[0].content == "again"
