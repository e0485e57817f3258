"""Session domain models for multi-turn automation conversations."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union

from models.locator_record import LocatorRecord


@dataclass
class TextBlock:
	"""Plain text produced by the model."""

	text: str
	type: str = "text"


@dataclass
class ToolCallBlock:
	"""A tool invocation requested by the model."""

	call_id: str
	name: str
	arguments: Dict[str, Any] = field(default_factory=dict)
	type: str = "tool_call"


@dataclass
class ToolResultBlock:
	"""Outcome of one tool invocation, tagged with the originating call id."""

	call_id: str
	content: List[Dict[str, Any]] = field(default_factory=list)
	is_error: bool = False
	type: str = "tool_result"


ContentBlock = Union[TextBlock, ToolCallBlock, ToolResultBlock]


@dataclass
class SessionMessage:
	"""One turn of the conversation history."""

	role: str
	content: Union[str, List[ContentBlock]]
	created_at: float = field(default_factory=lambda: time.time())

	def blocks(self) -> List[ContentBlock]:
		"""Return the content as a list of blocks."""
		if isinstance(self.content, str):
			return [TextBlock(text=self.content)] if self.content else []
		return list(self.content)

	def tool_calls(self) -> List[ToolCallBlock]:
		return [block for block in self.blocks() if isinstance(block, ToolCallBlock)]

	def to_dict(self) -> Dict[str, Any]:
		content: Any = self.content
		if not isinstance(content, str):
			content = [asdict(block) for block in content]
		return {"role": self.role, "content": content, "created_at": self.created_at}


@dataclass
class InteractionContext:
	"""What the agent knows about the browser it is driving."""

	current_url: Optional[str] = None
	last_screenshot: Optional[str] = None
	browser_state: str = "closed"
	completed_actions: List[str] = field(default_factory=list)

	def to_dict(self) -> Dict[str, Any]:
		return asdict(self)


@dataclass
class Session:
	"""In-memory state for one automation conversation."""

	session_id: str
	created_at: float
	last_activity: float
	messages: List[SessionMessage] = field(default_factory=list)
	context: InteractionContext = field(default_factory=InteractionContext)
	locator_history: List[LocatorRecord] = field(default_factory=list)
	total_steps: int = 0
	total_iterations: int = 0


@dataclass
class SessionSummary:
	"""Lightweight listing view of a session."""

	session_id: str
	created_at: float
	last_activity: float
	message_count: int
	total_steps: int
	browser_state: str
	current_url: Optional[str]

	@classmethod
	def of(cls, session: Session) -> "SessionSummary":
		return cls(
			session_id=session.session_id,
			created_at=session.created_at,
			last_activity=session.last_activity,
			message_count=len(session.messages),
			total_steps=session.total_steps,
			browser_state=session.context.browser_state,
			current_url=session.context.current_url,
		)

	def to_dict(self) -> Dict[str, Any]:
		return asdict(self)


@dataclass
class SessionPatch:
	"""Changes folded into a session after a completed prompt."""

	messages: List[SessionMessage] = field(default_factory=list)
	context: Dict[str, Any] = field(default_factory=dict)
	locators: List[LocatorRecord] = field(default_factory=list)
	steps: int = 0
	iterations: int = 0
