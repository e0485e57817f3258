import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from models.session_models import Session, SessionMessage, TextBlock, ToolCallBlock, ToolResultBlock
from models.tool_models import ToolDescriptor
from services.agent.conversation_engine import ConversationEngine
from services.agent.model_service import OpenAIModelService, classify_error, create_client
from services.agent.openai_format import chat_messages, parse_reply, tool_specs
from services.errors import ModelOverloadedError, ModelServiceError, ModelTransientError

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")

NAVIGATE = ToolDescriptor(
    "playwright_playwright_navigate",
    "Navigate to a URL",
    {"type": "object", "properties": {"url": {"type": "string"}}},
    "playwright",
    "playwright_navigate",
)


def status_error(status):
    return openai.APIStatusError("failure", response=httpx.Response(status, request=REQUEST), body=None)


def completion(content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3),
    )


def function_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


class FakeCompletions:
    def __init__(self, outcome):
        self.outcome = outcome
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def fake_client(outcome):
    completions = FakeCompletions(outcome)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def test_tool_specs_use_namespaced_names():
    spec = tool_specs([NAVIGATE])[0]
    assert spec["type"] == "function"
    assert spec["function"]["name"] == "playwright_playwright_navigate"
    assert spec["function"]["parameters"]["properties"]["url"] == {"type": "string"}


def test_chat_messages_pair_tool_calls_and_results():
    history = [
        SessionMessage(role="user", content="open example.com"),
        SessionMessage(
            role="assistant",
            content=[
                TextBlock(text="Opening"),
                ToolCallBlock(call_id="call_1", name=NAVIGATE.name, arguments={"url": "https://example.com"}),
            ],
        ),
        SessionMessage(
            role="user",
            content=[ToolResultBlock(call_id="call_1", content=[{"type": "text", "text": "Navigated"}])],
        ),
    ]

    messages = chat_messages("be helpful", history)

    assert messages[0] == {"role": "system", "content": "be helpful"}
    assert messages[1] == {"role": "user", "content": "open example.com"}
    assistant = messages[2]
    assert assistant["content"] == "Opening"
    assert assistant["tool_calls"][0]["id"] == "call_1"
    assert json.loads(assistant["tool_calls"][0]["function"]["arguments"]) == {"url": "https://example.com"}
    assert messages[3] == {"role": "tool", "tool_call_id": "call_1", "content": "Navigated"}
    assert len(messages) == 4


def test_parse_reply_reads_text_and_tool_calls():
    reply = parse_reply(
        completion(
            content="Let me look",
            tool_calls=[
                function_call("call_1", NAVIGATE.name, '{"url": "https://example.com"}'),
                function_call("call_2", "playwright_playwright_screenshot", "not json"),
            ],
        )
    )

    assert reply.text == "Let me look"
    assert reply.tool_calls[0].arguments == {"url": "https://example.com"}
    assert reply.tool_calls[1].arguments == {}


def test_parse_reply_without_choices():
    reply = parse_reply(SimpleNamespace(choices=[]))
    assert reply.text == "" and reply.tool_calls == []


@pytest.mark.parametrize(
    "status, expected",
    [
        (529, ModelOverloadedError),
        (503, ModelOverloadedError),
        (429, ModelTransientError),
        (500, ModelTransientError),
    ],
)
def test_classify_retryable_statuses(status, expected):
    error = classify_error(status_error(status))
    assert isinstance(error, expected)
    assert error.status_code == status


def test_classify_client_errors_as_fatal():
    error = classify_error(status_error(400))
    assert type(error) is ModelServiceError


def test_classify_connection_errors_as_transient():
    assert isinstance(classify_error(openai.APIConnectionError(request=REQUEST)), ModelTransientError)


@pytest.mark.asyncio
async def test_complete_sends_tools_and_history():
    client, completions = fake_client(completion(content="Hello"))
    service = OpenAIModelService(client, model="gpt-test", max_tokens=100)

    reply = await service.complete(
        system="sys",
        tools=[NAVIGATE],
        messages=[SessionMessage(role="user", content="hi")],
    )

    assert reply.text == "Hello"
    request = completions.requests[0]
    assert request["model"] == "gpt-test"
    assert request["max_completion_tokens"] == 100
    assert request["tools"][0]["function"]["name"] == NAVIGATE.name
    assert request["messages"][-1] == {"role": "user", "content": "hi"}


@pytest.mark.asyncio
async def test_complete_omits_empty_tool_list():
    client, completions = fake_client(completion(content="Hello"))
    await OpenAIModelService(client).complete(system="sys", tools=[], messages=[])
    assert "tools" not in completions.requests[0]


@pytest.mark.asyncio
async def test_complete_translates_client_errors():
    client, _ = fake_client(status_error(529))
    with pytest.raises(ModelOverloadedError):
        await OpenAIModelService(client).complete(system="sys", tools=[], messages=[])


def test_service_requires_client():
    with pytest.raises(ValueError):
        OpenAIModelService(None)


class EmptyRegistry:
    def list_tools(self):
        return []

    async def call(self, name, arguments=None):
        raise AssertionError("no tools expected")


@pytest.mark.asyncio
async def test_overloaded_service_gets_one_request_per_attempt():
    requests = []

    def overloaded(request):
        requests.append(request)
        return httpx.Response(529, json={"error": {"message": "Overloaded", "type": "overloaded_error"}})

    client = create_client("sk-test", http_client=httpx.AsyncClient(transport=httpx.MockTransport(overloaded)))
    delays = []

    async def record_sleep(delay):
        delays.append(delay)

    engine = ConversationEngine(OpenAIModelService(client), EmptyRegistry(), sleep=record_sleep)

    with pytest.raises(ModelServiceError):
        await engine.run(Session(session_id="s1", created_at=0.0, last_activity=0.0), "hi")

    assert len(requests) == 3
    assert delays == [2.0, 4.0]
    await client.close()


def test_client_disables_sdk_retries():
    assert create_client("sk-test").max_retries == 0
