"""Derive locator records and browser context changes from tool calls."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from models.locator_record import LocatorRecord
from models.tool_models import ToolResult

ACTION_PREFIX = "playwright_"
ELEMENT_PATTERN = re.compile(r"Found element[:\s]+(.+?)(?:\n|$)", re.IGNORECASE)
FAILURE_KEYWORDS = ("error", "failed", "not found")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def action_for(tool_name: str) -> str:
    """Return the action label, e.g. ``playwright_playwright_click`` -> ``click``."""
    action = tool_name
    while action.startswith(ACTION_PREFIX):
        action = action[len(ACTION_PREFIX):]
    return action


def locator_for(arguments: Dict[str, Any]) -> Optional[str]:
    """Pick the selector a tool call targets, or None when it has none."""
    if arguments.get("selector"):
        return str(arguments["selector"])
    if arguments.get("locator"):
        return str(arguments["locator"])
    if arguments.get("text"):
        return f'text="{arguments["text"]}"'
    if arguments.get("role") and arguments.get("name"):
        return f'role={arguments["role"]}[name="{arguments["name"]}"]'
    return None


def extract_locator(
    tool_name: str,
    arguments: Optional[Dict[str, Any]],
    result: Optional[ToolResult],
    *,
    timestamp: Optional[str] = None,
) -> LocatorRecord:
    """Build the LocatorRecord for one tool invocation.

    ``result`` is None when the call raised. The record's ``locator`` is None
    when the arguments carry no selector; callers keep such records out of
    the locator trail.
    """
    arguments = arguments or {}
    element = None
    success = result is not None and not result.is_error

    if result is not None:
        text = result.first_text()
        match = ELEMENT_PATTERN.search(text)
        if match:
            element = match.group(1).strip()
        lowered = text.lower()
        if any(keyword in lowered for keyword in FAILURE_KEYWORDS):
            success = False

    return LocatorRecord(
        tool=tool_name,
        timestamp=timestamp or _utc_now(),
        locator=locator_for(arguments),
        action=action_for(tool_name),
        element=element,
        success=success,
    )


def derive_context_updates(
    action: str,
    arguments: Optional[Dict[str, Any]],
    result: Optional[ToolResult],
) -> Dict[str, Any]:
    """Return the interaction-context fields a successful call changes."""
    if result is None or result.is_error:
        return {}
    arguments = arguments or {}
    updates: Dict[str, Any] = {"completed_actions": [action]}
    if action == "navigate" and arguments.get("url"):
        updates["current_url"] = arguments["url"]
        updates["browser_state"] = "open"
    elif action == "screenshot":
        updates["last_screenshot"] = _utc_now()
    elif action == "close":
        updates["browser_state"] = "closed"
    return updates
