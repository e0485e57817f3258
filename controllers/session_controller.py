"""Session lifecycle helpers for automation conversations."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException, Request

from services.automation_service import AutomationService
from services.errors import SessionNotFound


def get_service(request: Request) -> AutomationService:
	"""Retrieve the shared automation service from the app state."""
	service = getattr(request.app.state, "automation_service", None)
	if service is None:
		raise HTTPException(status_code=500, detail="Automation service not initialized.")
	return service


async def create_session(request: Request) -> Dict[str, Any]:
	"""Create a new automation session and return its id."""
	session_id = get_service(request).create_session()
	return {"session_id": session_id, "message": "New automation session created"}


async def describe_session(request: Request, session_id: str) -> Dict[str, Any]:
	"""Return session details and its most recent locators."""
	try:
		return get_service(request).get_session(session_id)
	except SessionNotFound as exc:
		raise HTTPException(status_code=404, detail="Session not found") from exc


async def list_sessions(request: Request) -> Dict[str, Any]:
	return {"sessions": get_service(request).list_sessions()}


async def delete_session(request: Request, session_id: str) -> Dict[str, Any]:
	"""Delete a session or report that it does not exist."""
	if not get_service(request).delete_session(session_id):
		raise HTTPException(status_code=404, detail="Session not found")
	return {"message": "Session deleted successfully"}


async def session_history(request: Request, session_id: str) -> Dict[str, Any]:
	"""Return the full conversation, locator trail, and context of a session."""
	try:
		return get_service(request).get_history(session_id)
	except SessionNotFound as exc:
		raise HTTPException(status_code=404, detail="Session not found") from exc
