"""Language model access for the conversation engine via OpenAI Chat Completions."""

import logging
import os
import time
from typing import Any, Dict, List

import openai
from openai import AsyncOpenAI

from models.model_reply import ModelReply
from models.session_models import SessionMessage
from models.tool_models import ToolDescriptor
from services.agent.openai_format import chat_messages, extract_usage, parse_reply, tool_specs
from services.errors import ModelOverloadedError, ModelServiceError, ModelTransientError

LOGGER = logging.getLogger(__name__)
DEFAULT_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
OVERLOADED_STATUS_CODES = {503, 529}
RATE_LIMIT_STATUS = 429


def create_client(api_key: str, **kwargs: Any) -> AsyncOpenAI:
    """Build the AsyncOpenAI client with SDK-level retries turned off.

    The conversation engine owns the retry budget and backoff.
    """
    return AsyncOpenAI(api_key=api_key, max_retries=0, **kwargs)


def classify_error(exc: Exception) -> ModelServiceError:
    """Map an OpenAI client exception onto the model error taxonomy."""
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        if status in OVERLOADED_STATUS_CODES:
            return ModelOverloadedError(f"Model service overloaded: {exc}", status_code=status)
        if status == RATE_LIMIT_STATUS or status >= 500:
            return ModelTransientError(f"Model service unavailable: {exc}", status_code=status)
        return ModelServiceError(f"Model service rejected the request: {exc}", status_code=status)
    if isinstance(exc, openai.APIConnectionError):
        return ModelTransientError(f"Could not reach the model service: {exc}")
    return ModelTransientError(f"Model service call failed: {exc}")


class OpenAIModelService:
    """Query a chat model with the session history and the tool catalog.

    Any object with an async ``complete(system=, tools=, messages=)`` method
    returning a ModelReply can stand in for this service.
    """

    def __init__(self, client: AsyncOpenAI, model: str = DEFAULT_MODEL, max_tokens: int = 2048) -> None:
        if client is None:
            raise ValueError("AsyncOpenAI client is required.")
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    async def complete(
        self,
        *,
        system: str,
        tools: List[ToolDescriptor],
        messages: List[SessionMessage],
    ) -> ModelReply:
        """Return the model's reply to the conversation so far.

        Raises:
            ModelOverloadedError: The service reported overload.
            ModelTransientError: A retryable failure (network, rate limit, 5xx).
            ModelServiceError: The request was rejected and should not be retried.
        """
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": chat_messages(system, messages),
            "max_completion_tokens": self.max_tokens,
        }
        specs = tool_specs(tools)
        if specs:
            request["tools"] = specs

        start = time.time()
        try:
            response = await self.client.chat.completions.create(**request)
        except openai.OpenAIError as exc:
            error = classify_error(exc)
            LOGGER.error("OpenAI Chat Completions error: %s", error)
            raise error from exc

        reply = parse_reply(response)
        usage = extract_usage(response)
        LOGGER.info(
            "Model reply in %.3fs: %d tool call(s), tokens in=%s out=%s",
            time.time() - start,
            len(reply.tool_calls),
            usage["input_tokens"],
            usage["output_tokens"],
        )
        return reply
