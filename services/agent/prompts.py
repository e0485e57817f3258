"""Prompt helpers for the browser automation agent."""

from __future__ import annotations

import json

from models.session_models import Session

CORE_PRINCIPLES = (
	"CORE PRINCIPLES:\n"
	"- Use your eyes first: take screenshots to understand the current state\n"
	"- Think dynamically: analyze the page structure and adapt your approach\n"
	"- Be persistent: if something doesn't work, observe and try alternatives\n"
	"- Session continuity: remember what has been done and build upon it"
)


def session_context_block(session: Session, recent_locators: int = 3) -> str:
	"""Return the session awareness section for new or continuing sessions."""
	if not session.messages:
		return (
			f"- This is a NEW session (ID: {session.session_id})\n"
			"- No previous context available\n"
			"- Start fresh with the automation task"
		)
	context = session.context
	locators = [record.locator for record in session.locator_history[-recent_locators:] if record.locator]
	return (
		f"- This is a CONTINUING session (ID: {session.session_id})\n"
		"- Previous conversation history is available\n"
		f"- Current context: {json.dumps(context.to_dict())}\n"
		f"- Actions completed so far: {session.total_steps}\n"
		f"- Browser state: {context.browser_state}\n"
		f"- Current URL: {context.current_url or 'None'}\n"
		f"- Recent locators used: {', '.join(locators) or 'None'}\n\n"
		"IMPORTANT: Build upon the previous conversation. Don't repeat completed actions unless specifically asked.\n"
		"Ask clarifying questions about what the user wants to do next if the prompt is ambiguous."
	)


def system_prompt(session: Session) -> str:
	"""Return the system directive for the next model call."""
	return (
		"You are an intelligent browser automation assistant with session continuity capabilities.\n\n"
		f"SESSION CONTEXT AWARENESS:\n{session_context_block(session)}\n\n"
		f"{CORE_PRINCIPLES}\n\n"
		"You have access to Playwright MCP tools for browser automation. "
		"Use them intelligently based on what you observe and the session context."
	)
