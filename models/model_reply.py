"""Model service reply shape consumed by the conversation engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from models.session_models import ContentBlock, TextBlock, ToolCallBlock


@dataclass
class ModelReply:
	"""Text segments and tool-call requests returned by one model call."""

	text_segments: List[str] = field(default_factory=list)
	tool_calls: List[ToolCallBlock] = field(default_factory=list)

	@property
	def text(self) -> str:
		return "\n".join(segment for segment in self.text_segments if segment)

	def blocks(self) -> List[ContentBlock]:
		"""Return the reply as assistant content blocks, text first."""
		blocks: List[ContentBlock] = [TextBlock(text=segment) for segment in self.text_segments if segment]
		blocks.extend(self.tool_calls)
		return blocks
