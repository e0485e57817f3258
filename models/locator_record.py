from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class LocatorRecord:
    """Structured trace of one tool invocation against a page element.

    Attributes:
        tool: Namespaced tool name that was invoked.
        timestamp: ISO-8601 UTC time the record was derived.
        locator: Selector string targeted by the call, if any.
        action: Action label derived from the tool name.
        element: Element description reported by the tool, if any.
        success: False when the tool failed or reported a failure.
    """

    tool: str
    timestamp: str
    locator: Optional[str] = None
    action: Optional[str] = None
    element: Optional[str] = None
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
