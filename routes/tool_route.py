from fastapi import APIRouter, HTTPException, Request

from controllers.tool_controller import list_tools

router = APIRouter(prefix="/api")


@router.get("/tools")
async def get_tools(request: Request):
    """Return every tool discovered from the connected tool servers."""
    try:
        return await list_tools(request)
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))
