"""Session-aware prompt processing exposed to the HTTP layer."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from models.session_models import SessionPatch
from services.agent.conversation_engine import ConversationEngine
from services.mcp.tool_registry import ToolRegistry
from services.session.session_store import SessionStore

LOGGER = logging.getLogger(__name__)

RECENT_LOCATORS = 5


class AutomationService:
    """Coordinate the session store, conversation engine, and tool catalog."""

    def __init__(self, store: SessionStore, engine: ConversationEngine, registry: ToolRegistry) -> None:
        self.store = store
        self.engine = engine
        self.registry = registry

    def create_session(self) -> str:
        session = self.store.create()
        LOGGER.info("Created new session: %s", session.session_id)
        return session.session_id

    def get_session(self, session_id: str) -> Dict[str, Any]:
        """Return the summary, context, and most recent locators of a session."""
        session = self.store.get(session_id)
        return {
            "session_id": session.session_id,
            "created_at": session.created_at,
            "last_activity": session.last_activity,
            "message_count": len(session.messages),
            "total_steps": session.total_steps,
            "total_iterations": session.total_iterations,
            "context": session.context.to_dict(),
            "recent_locators": [record.to_dict() for record in session.locator_history[-RECENT_LOCATORS:]],
        }

    def list_sessions(self) -> List[Dict[str, Any]]:
        return [summary.to_dict() for summary in self.store.list_summaries()]

    def delete_session(self, session_id: str) -> bool:
        deleted = self.store.delete(session_id)
        if deleted:
            LOGGER.info("Deleted session: %s", session_id)
        return deleted

    async def process_prompt(
        self,
        session_id: Optional[str],
        continue_session: bool,
        text: str,
    ) -> Dict[str, Any]:
        """Run one prompt through the agent loop and fold the outcome into the session.

        Args:
            session_id: Session to continue, if any.
            continue_session: Continue ``session_id`` instead of starting fresh.
            text: The user's prompt.

        Returns:
            Response text, the new locators, step counts, and context updates.

        Raises:
            ValueError: If the prompt is empty.
            SessionNotFound: If asked to continue an unknown session.
            SessionBusy: If the session is already processing a prompt.
            ModelServiceError: If the model retry budget ran out. A continued
                session is left exactly as it was before the call; a session
                created for this prompt is discarded.
        """
        if not text or not text.strip():
            raise ValueError("Prompt is required")

        created = not (session_id and continue_session)
        if created:
            session = self.store.create()
            LOGGER.info("Starting new session: %s", session.session_id)
        else:
            session = self.store.get(session_id)
            LOGGER.info("Continuing session: %s", session_id)

        LOGGER.info("Processing prompt in session %s: %s", session.session_id, text)
        try:
            with self.store.turn(session.session_id):
                result = await self.engine.run(session, text)
                session = self.store.update(
                    session.session_id,
                    SessionPatch(
                        messages=result.messages,
                        context=result.context_updates,
                        locators=result.locators,
                        steps=result.tool_invocations,
                        iterations=result.iterations,
                    ),
                )
        except Exception:
            if created:
                self.store.delete(session.session_id)
                LOGGER.info("Discarded session %s after its first prompt failed", session.session_id)
            raise

        return {
            "session_id": session.session_id,
            "response": result.response_text,
            "locators": [record.to_dict() for record in result.locators],
            "total_steps": result.tool_invocations,
            "iterations": result.iterations,
            "state": result.state.value,
            "context": result.context_updates,
            "success": True,
            "can_continue": True,
            "session_info": {
                "total_steps": session.total_steps,
                "total_locators": len(session.locator_history),
                "session_age": session.last_activity - session.created_at,
            },
        }

    def get_history(self, session_id: str) -> Dict[str, Any]:
        session = self.store.get(session_id)
        return {
            "session_id": session.session_id,
            "messages": [message.to_dict() for message in session.messages],
            "locator_history": [record.to_dict() for record in session.locator_history],
            "context": session.context.to_dict(),
        }

    def list_tools(self) -> List[Dict[str, Any]]:
        return [tool.to_dict() for tool in self.registry.list_tools()]
