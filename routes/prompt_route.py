"""FastAPI route for prompt processing with session support."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from controllers.prompt_controller import process_prompt

router = APIRouter(prefix="/api")


class PromptPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = ""
    session_id: Optional[str] = Field(None, alias="sessionId")
    continue_session: bool = Field(False, alias="continueSession")


@router.post("/prompt", summary="Run an automation prompt")
async def post_prompt(request: Request, payload: PromptPayload):
    """Process a prompt in a new or continuing session."""
    try:
        return await process_prompt(request, payload.prompt, payload.session_id, payload.continue_session)
    except HTTPException:
        raise
    except Exception as exc:  # pylint: disable=broad-exception-caught
        raise HTTPException(status_code=500, detail="Failed to process prompt.") from exc
