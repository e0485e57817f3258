"""FastAPI routes for automation sessions."""

from fastapi import APIRouter, HTTPException, Request

from controllers.session_controller import (
	create_session,
	delete_session,
	describe_session,
	list_sessions,
	session_history,
)

router = APIRouter(prefix="/api")


@router.post("/session/create")
async def create_session_route(request: Request):
	try:
		return await create_session(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/session/{session_id}")
async def get_session_route(request: Request, session_id: str):
	try:
		return await describe_session(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/sessions")
async def list_sessions_route(request: Request):
	try:
		return await list_sessions(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.delete("/session/{session_id}")
async def delete_session_route(request: Request, session_id: str):
	try:
		return await delete_session(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/session/{session_id}/history")
async def session_history_route(request: Request, session_id: str):
	try:
		return await session_history(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
