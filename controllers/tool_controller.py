from typing import Any, Dict

from fastapi import Request

from controllers.session_controller import get_service


async def list_tools(request: Request) -> Dict[str, Any]:
    """Return the aggregated tool catalog."""
    return {"tools": get_service(request).list_tools()}
