"""Translate session history and tool catalogs to and from Chat Completions."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from models.model_reply import ModelReply
from models.session_models import SessionMessage, TextBlock, ToolCallBlock, ToolResultBlock
from models.tool_models import ToolDescriptor

LOGGER = logging.getLogger(__name__)


def tool_specs(tools: Iterable[ToolDescriptor]) -> List[Dict[str, Any]]:
	"""Return function tool definitions for the catalog."""
	return [
		{
			"type": "function",
			"function": {
				"name": tool.name,
				"description": tool.description,
				"parameters": tool.input_schema,
			},
		}
		for tool in tools
	]


def _result_text(block: ToolResultBlock) -> str:
	parts = []
	for item in block.content:
		if item.get("type") == "text":
			parts.append(item.get("text") or "")
		else:
			parts.append(json.dumps(item))
	return "\n".join(parts)


def chat_messages(system: str, history: Iterable[SessionMessage]) -> List[Dict[str, Any]]:
	"""Return the Chat Completions message list for a system directive and history."""
	messages: List[Dict[str, Any]] = [{"role": "system", "content": system}]
	for message in history:
		if isinstance(message.content, str):
			messages.append({"role": message.role, "content": message.content})
			continue

		texts = [block.text for block in message.content if isinstance(block, TextBlock)]
		if message.role == "assistant":
			entry: Dict[str, Any] = {"role": "assistant", "content": "\n".join(texts) or None}
			calls = message.tool_calls()
			if calls:
				entry["tool_calls"] = [
					{
						"id": call.call_id,
						"type": "function",
						"function": {"name": call.name, "arguments": json.dumps(call.arguments)},
					}
					for call in calls
				]
			messages.append(entry)
			continue

		for block in message.content:
			if isinstance(block, ToolResultBlock):
				messages.append({"role": "tool", "tool_call_id": block.call_id, "content": _result_text(block)})
		if texts:
			messages.append({"role": message.role, "content": "\n".join(texts)})
	return messages


def _parse_arguments(raw: Optional[str], name: str) -> Dict[str, Any]:
	try:
		arguments = json.loads(raw or "{}")
	except json.JSONDecodeError:
		LOGGER.warning("Unparseable arguments for tool call '%s': %r", name, raw)
		return {}
	return arguments if isinstance(arguments, dict) else {}


def parse_reply(response: Any) -> ModelReply:
	"""Extract text and tool calls from a Chat Completions response."""
	choices = getattr(response, "choices", None) or []
	if not choices:
		return ModelReply()
	message = choices[0].message
	text = getattr(message, "content", None)
	calls = []
	for call in getattr(message, "tool_calls", None) or []:
		function = call.function
		calls.append(
			ToolCallBlock(
				call_id=call.id,
				name=function.name,
				arguments=_parse_arguments(function.arguments, function.name),
			)
		)
	return ModelReply(text_segments=[text] if text else [], tool_calls=calls)


def extract_usage(response: Any) -> Dict[str, Optional[int]]:
	"""Return token usage if present."""
	usage = getattr(response, "usage", None)
	return {
		"input_tokens": getattr(usage, "prompt_tokens", None) if usage else None,
		"output_tokens": getattr(usage, "completion_tokens", None) if usage else None,
	}
