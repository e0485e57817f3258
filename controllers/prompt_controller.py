"""Controller for processing automation prompts."""

import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request

from controllers.session_controller import get_service
from services.errors import ModelServiceError, SessionBusy, SessionNotFound

LOGGER = logging.getLogger(__name__)


async def process_prompt(
    request: Request,
    prompt: str,
    session_id: Optional[str],
    continue_session: bool,
) -> Dict[str, Any]:
    """Run a prompt through the agent loop and return the automation result.

    Args:
        request: The FastAPI request containing application state.
        prompt: The user's instruction.
        session_id: Optional session to continue.
        continue_session: Whether to continue ``session_id`` or start a new session.

    Returns:
        The automation result from the service.

    Raises:
        HTTPException: 400 for an empty prompt, 404 for an unknown session,
            409 when the session is busy, 500 for any processing failure.
    """
    service = get_service(request)
    try:
        return await service.process_prompt(session_id, continue_session, prompt)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SessionNotFound as exc:
        raise HTTPException(status_code=404, detail="Session not found") from exc
    except SessionBusy as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ModelServiceError as exc:
        LOGGER.error("Error processing prompt: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to process prompt.") from exc
