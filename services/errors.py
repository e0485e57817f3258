"""Error types raised by the tool bridge, conversation engine, and session store."""

from __future__ import annotations

from typing import Any, Dict, Optional


class OrchestratorError(Exception):
    """Base class for all orchestration failures."""


class HandshakeError(OrchestratorError):
    """A tool server did not complete the initialize handshake."""

    def __init__(self, server: str, reason: str) -> None:
        super().__init__(f"Handshake with tool server '{server}' failed: {reason}")
        self.server = server
        self.reason = reason


class FrameDecodeError(OrchestratorError):
    """A single record on the stream could not be parsed."""

    def __init__(self, record: bytes, reason: str) -> None:
        super().__init__(f"Malformed record ({reason}): {record[:200]!r}")
        self.record = record
        self.reason = reason


class RequestTimeout(OrchestratorError):
    """A pending request was not answered before its deadline."""

    def __init__(self, server: str, method: str, timeout: float) -> None:
        super().__init__(f"Request '{method}' to '{server}' timed out after {timeout:g} seconds")
        self.server = server
        self.method = method
        self.timeout = timeout


class BridgeClosed(OrchestratorError):
    """The bridge was torn down while a request was outstanding."""

    def __init__(self, server: str, reason: str = "bridge closed") -> None:
        super().__init__(f"Tool server '{server}' is unavailable: {reason}")
        self.server = server


class RemoteError(OrchestratorError):
    """The peer answered a request with a JSON-RPC error object."""

    def __init__(self, payload: Dict[str, Any]) -> None:
        self.payload = dict(payload or {})
        self.code = self.payload.get("code")
        self.data = self.payload.get("data")
        message = self.payload.get("message") or "Unknown remote error"
        super().__init__(f"{message} (code {self.code})" if self.code is not None else message)


class ToolExecutionError(OrchestratorError):
    """A tool call failed on the tool server."""

    def __init__(self, tool: str, payload: Dict[str, Any]) -> None:
        self.tool = tool
        self.payload = dict(payload or {})
        super().__init__(self.payload.get("message") or "Tool execution failed")


class UnknownTool(OrchestratorError):
    """No catalog entry matches the requested tool name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class PartialDiscoveryError(OrchestratorError):
    """One or more bridges failed to report their tools."""

    def __init__(self, failures: Dict[str, BaseException]) -> None:
        self.failures = dict(failures)
        names = ", ".join(sorted(self.failures))
        super().__init__(f"Tool discovery failed for: {names}")


class ModelServiceError(OrchestratorError):
    """The language model service could not produce a reply."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ModelOverloadedError(ModelServiceError):
    """The model service reported it is overloaded."""


class ModelTransientError(ModelServiceError):
    """A retryable model service failure (network, rate limit, 5xx)."""


class SessionNotFound(OrchestratorError, KeyError):
    """No session exists for the given id."""

    def __init__(self, session_id: str) -> None:
        OrchestratorError.__init__(self, f"Session {session_id} not found")
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session {self.session_id} not found"


class SessionBusy(OrchestratorError):
    """A prompt is already being processed for the session."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} is already processing a prompt")
        self.session_id = session_id
