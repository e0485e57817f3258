"""Tool catalog entries and tool call results."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

SUCCESS_TEXT = "Tool executed successfully"


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool exposed by one tool server, namespaced by the server name.

    Attributes:
        name: Catalog name, ``<server>_<original_name>``.
        description: Human readable description reported by the server.
        input_schema: JSON schema for the tool arguments.
        server: Name of the bridge that owns the tool.
        original_name: Name the tool server knows the tool by.
    """

    name: str
    description: str
    input_schema: Dict[str, Any]
    server: str
    original_name: str

    @classmethod
    def from_listing(cls, server: str, entry: Dict[str, Any]) -> "ToolDescriptor":
        """Build a descriptor from one ``tools/list`` entry."""
        original = entry.get("name")
        if not original:
            raise ValueError(f"Tool listing from '{server}' is missing a name.")
        schema = entry.get("inputSchema") or {"type": "object", "properties": {}}
        return cls(
            name=f"{server}_{original}",
            description=entry.get("description") or "",
            input_schema=schema,
            server=server,
            original_name=original,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "server": self.server,
            "originalName": self.original_name,
        }


@dataclass
class ToolResult:
    """Outcome of a ``tools/call`` request."""

    content: List[Dict[str, Any]] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "ToolResult":
        """Normalize a ``tools/call`` result into a ToolResult."""
        if not payload:
            return cls(content=[{"type": "text", "text": SUCCESS_TEXT}])
        content = payload.get("content")
        if not isinstance(content, list):
            content = [{"type": "text", "text": json.dumps(payload)}]
        return cls(content=content, is_error=bool(payload.get("isError", False)))

    def first_text(self) -> str:
        """Return the first text item, or an empty string."""
        for item in self.content:
            if isinstance(item, dict) and item.get("type") == "text":
                return item.get("text") or ""
        return ""
