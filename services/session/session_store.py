"""In-memory store for automation sessions with idle expiry."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Set
from uuid import uuid4

from models.session_models import InteractionContext, Session, SessionPatch, SessionSummary
from services.errors import SessionBusy, SessionNotFound

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30 * 60

Scheduler = Callable[[float, Callable[[], None]], Any]


def call_later(delay: float, callback: Callable[[], None]) -> Optional[asyncio.TimerHandle]:
	"""Schedule ``callback`` on the running event loop."""
	try:
		loop = asyncio.get_running_loop()
	except RuntimeError:
		LOGGER.warning("No running event loop; session expiry sweep not scheduled")
		return None
	return loop.call_later(delay, callback)


class SessionStore:
	"""Create, update, and expire sessions; serialize turns per session."""

	def __init__(
		self,
		timeout: float = DEFAULT_TIMEOUT_SECONDS,
		clock: Callable[[], float] = time.time,
		scheduler: Optional[Scheduler] = None,
	) -> None:
		self.timeout = timeout
		self._clock = clock
		self._scheduler = scheduler or call_later
		self._sessions: Dict[str, Session] = {}
		self._sweeps: Dict[str, Any] = {}
		self._active_turns: Set[str] = set()

	def create(self) -> Session:
		"""Create an empty session and schedule its idle sweep."""
		now = self._clock()
		session_id = uuid4().hex
		session = Session(session_id=session_id, created_at=now, last_activity=now)
		self._sessions[session_id] = session
		self._schedule_sweep(session_id, self.timeout)
		return session

	def get(self, session_id: str) -> Session:
		"""Return a session or raise SessionNotFound if missing."""
		session = self._sessions.get(session_id)
		if session is None:
			raise SessionNotFound(session_id)
		return session

	def update(self, session_id: str, patch: SessionPatch) -> Session:
		"""Fold a patch into the session and refresh its activity time."""
		session = self.get(session_id)
		session.messages.extend(patch.messages)
		_merge_context(session.context, patch.context)
		session.locator_history.extend(patch.locators)
		session.total_steps += patch.steps
		session.total_iterations += patch.iterations
		session.last_activity = self._clock()
		return session

	def delete(self, session_id: str) -> bool:
		"""Remove a session; return False if it did not exist."""
		handle = self._sweeps.pop(session_id, None)
		if handle is not None and hasattr(handle, "cancel"):
			handle.cancel()
		return self._sessions.pop(session_id, None) is not None

	def list_summaries(self) -> List[SessionSummary]:
		return [SessionSummary.of(session) for session in self._sessions.values()]

	def __len__(self) -> int:
		return len(self._sessions)

	def __contains__(self, session_id: object) -> bool:
		return session_id in self._sessions

	@contextmanager
	def turn(self, session_id: str) -> Iterator[Session]:
		"""Hold the session's single prompt-processing slot.

		Raises:
			SessionNotFound: If the session does not exist.
			SessionBusy: If another prompt is already running for it.
		"""
		session = self.get(session_id)
		if session_id in self._active_turns:
			raise SessionBusy(session_id)
		self._active_turns.add(session_id)
		try:
			yield session
		finally:
			self._active_turns.discard(session_id)

	def close(self) -> None:
		"""Cancel every pending sweep."""
		for handle in self._sweeps.values():
			if handle is not None and hasattr(handle, "cancel"):
				handle.cancel()
		self._sweeps.clear()

	def _schedule_sweep(self, session_id: str, delay: float) -> None:
		self._sweeps[session_id] = self._scheduler(delay, lambda: self._sweep(session_id))

	def _sweep(self, session_id: str) -> None:
		self._sweeps.pop(session_id, None)
		session = self._sessions.get(session_id)
		if session is None:
			return
		if session_id in self._active_turns:
			self._schedule_sweep(session_id, self.timeout)
			return
		idle = self._clock() - session.last_activity
		if idle > self.timeout:
			LOGGER.info("Cleaning up expired session: %s", session_id)
			self._sessions.pop(session_id, None)
			return
		self._schedule_sweep(session_id, max(self.timeout - idle, 0.0) + 1.0)


def _merge_context(context: InteractionContext, updates: Dict[str, Any]) -> None:
	for key, value in updates.items():
		if key == "completed_actions":
			context.completed_actions.extend(value)
		elif hasattr(context, key):
			setattr(context, key, value)
		else:
			LOGGER.debug("Ignoring unknown context field '%s'", key)
