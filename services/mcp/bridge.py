"""JSON-RPC bridge to one out-of-process tool server.

The bridge owns the server's stdin/stdout pair. Every outgoing request gets a
fresh id and a PendingRequest entry; a single reader task decodes incoming
records and resolves the matching entry, so any number of requests can be in
flight at once and answered in any order.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from models.tool_models import ToolDescriptor, ToolResult
from services.errors import (
    BridgeClosed,
    HandshakeError,
    RemoteError,
    RequestTimeout,
    ToolExecutionError,
)
from services.mcp.frame_codec import FrameCodec, encode_record

LOGGER = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_VERSION = "1.0.0"
DEFAULT_REQUEST_TIMEOUT = 45.0
DEFAULT_HANDSHAKE_TIMEOUT = 15.0
READ_CHUNK_SIZE = 64 * 1024
METHOD_NOT_FOUND = -32601

NotificationHandler = Callable[[Dict[str, Any]], Any]


@dataclass
class PendingRequest:
    """An outstanding request waiting for its response."""

    request_id: int
    method: str
    issued_at: float
    future: "asyncio.Future[Dict[str, Any]]"


class ToolServerBridge:
    """Multiplexed request/response channel to a single tool server."""

    def __init__(
        self,
        name: str,
        reader: asyncio.StreamReader,
        writer: Any,
        *,
        process: Optional[asyncio.subprocess.Process] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.request_timeout = request_timeout
        self.handshake_timeout = handshake_timeout
        self.server_info: Dict[str, Any] = {}
        self.capabilities: Dict[str, Any] = {}
        self._reader = reader
        self._writer = writer
        self._process = process
        self._clock = clock
        self._codec = FrameCodec()
        self._ids = itertools.count(1)
        self._pending: Dict[int, PendingRequest] = {}
        self._notification_handlers: Dict[str, NotificationHandler] = {}
        self._reader_task: Optional[asyncio.Task] = None
        self._handler_tasks: Set[asyncio.Future] = set()
        self._write_lock = asyncio.Lock()
        self._closed = False

    @classmethod
    async def spawn(
        cls,
        name: str,
        command: Sequence[str],
        *,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        **kwargs: Any,
    ) -> "ToolServerBridge":
        """Launch a tool server process and return a started bridge to it."""
        if not command:
            raise ValueError(f"No command configured for tool server '{name}'.")
        LOGGER.info("Starting tool server '%s': %s", name, " ".join(command))
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            env=env,
            cwd=cwd,
        )
        bridge = cls(name, process.stdout, process.stdin, process=process, **kwargs)
        bridge.start()
        return bridge

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_requests(self) -> List[PendingRequest]:
        return list(self._pending.values())

    def start(self) -> None:
        """Start the background reader if it is not running yet."""
        if self._reader_task is None:
            self._reader_task = asyncio.get_running_loop().create_task(self._read_loop())

    def on_notification(self, method: str, handler: NotificationHandler) -> None:
        """Register a callback for unsolicited notifications of ``method``.

        ``handler`` may be a plain function or a coroutine function; coroutines
        are scheduled on the running loop.
        """
        self._notification_handlers[method] = handler

    async def initialize(self) -> Dict[str, Any]:
        """Run the initialize handshake and announce readiness.

        Raises:
            HandshakeError: If the peer does not answer within the handshake
                window, answers with an error, or goes away.
        """
        params = {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}, "resources": {}},
            "clientInfo": {"name": f"api-{self.name}-client", "version": CLIENT_VERSION},
        }
        try:
            result = await self.request("initialize", params, timeout=self.handshake_timeout)
            await self.notify("notifications/initialized")
        except RequestTimeout as exc:
            raise HandshakeError(self.name, f"no response within {self.handshake_timeout:g} seconds") from exc
        except (BridgeClosed, RemoteError) as exc:
            raise HandshakeError(self.name, str(exc)) from exc

        self.server_info = result.get("serverInfo") or {}
        self.capabilities = result.get("capabilities") or {}
        LOGGER.info(
            "Tool server '%s' initialized (%s %s)",
            self.name,
            self.server_info.get("name", "unknown"),
            self.server_info.get("version", ""),
        )
        return result

    async def request(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send a request and wait for the response with the same id.

        Raises:
            RequestTimeout: No response before the deadline.
            BridgeClosed: The bridge shut down while waiting.
            RemoteError: The peer returned a JSON-RPC error object.
        """
        if self._closed:
            raise BridgeClosed(self.name)
        self.start()

        request_id = next(self._ids)
        pending = PendingRequest(
            request_id=request_id,
            method=method,
            issued_at=self._clock(),
            future=asyncio.get_running_loop().create_future(),
        )
        self._pending[request_id] = pending

        message: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params
        deadline = self.request_timeout if timeout is None else timeout

        try:
            await self._send(message)
            response = await asyncio.wait_for(pending.future, deadline)
        except asyncio.TimeoutError:
            LOGGER.warning("Request %s '%s' to '%s' timed out after %.1fs", request_id, method, self.name, deadline)
            raise RequestTimeout(self.name, method, deadline) from None
        finally:
            self._pending.pop(request_id, None)

        if "error" in response:
            error = response["error"]
            raise RemoteError(error if isinstance(error, dict) else {"message": str(error)})
        return response.get("result") or {}

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a notification; no response is expected."""
        if self._closed:
            raise BridgeClosed(self.name)
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._send(message)

    async def list_tools(self) -> List[ToolDescriptor]:
        """Return every tool the server offers, following pagination cursors."""
        descriptors: List[ToolDescriptor] = []
        cursor: Optional[str] = None
        seen_cursors = set()
        while True:
            result = await self.request("tools/list", {"cursor": cursor} if cursor else None)
            for entry in result.get("tools") or []:
                try:
                    descriptors.append(ToolDescriptor.from_listing(self.name, entry))
                except ValueError as exc:
                    LOGGER.warning("Skipping tool listing entry: %s", exc)
            cursor = result.get("nextCursor")
            if not cursor or cursor in seen_cursors:
                break
            seen_cursors.add(cursor)
        return descriptors

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """Invoke a tool by its original (un-prefixed) name.

        Raises:
            ToolExecutionError: The server rejected the call with an error object.
        """
        LOGGER.info("Executing tool '%s' on '%s'", name, self.name)
        try:
            result = await self.request("tools/call", {"name": name, "arguments": arguments or {}})
        except RemoteError as exc:
            LOGGER.warning("Tool '%s' on '%s' failed: %s", name, self.name, exc)
            raise ToolExecutionError(name, exc.payload) from exc
        return ToolResult.from_payload(result)

    async def shutdown(self, grace_period: float = 5.0) -> None:
        """Fail pending requests, close the pipes, and stop the process."""
        self._closed = True
        self._fail_pending("bridge shut down")
        for task in list(self._handler_tasks):
            task.cancel()

        try:
            self._writer.close()
        except (OSError, RuntimeError) as exc:
            LOGGER.debug("Closing stdin of '%s' failed: %s", self.name, exc)

        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass

        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), grace_period)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            LOGGER.warning("Tool server '%s' ignored terminate; killing it", self.name)
            process.kill()
            await process.wait()
        LOGGER.info("Tool server '%s' stopped", self.name)

    async def _send(self, message: Dict[str, Any]) -> None:
        data = encode_record(message)
        async with self._write_lock:
            try:
                self._writer.write(data)
                await self._writer.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                self._closed = True
                raise BridgeClosed(self.name, str(exc)) from exc

    async def _read_loop(self) -> None:
        reason = "tool server closed its output stream"
        try:
            while True:
                chunk = await self._reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                for message in self._codec.feed(chunk):
                    self._dispatch(message)
        except asyncio.CancelledError:
            reason = "bridge shut down"
            raise
        except (OSError, ValueError) as exc:
            LOGGER.error("Reading from tool server '%s' failed: %s", self.name, exc)
            reason = f"read failed: {exc}"
        finally:
            self._closed = True
            self._fail_pending(reason)

    def _dispatch(self, message: Dict[str, Any]) -> None:
        message_id = message.get("id")
        method = message.get("method")

        if method is None:
            if message_id is None:
                LOGGER.debug("Ignoring record without id or method from '%s'", self.name)
                return
            pending = self._pending.pop(message_id, None)
            if pending is None:
                LOGGER.warning("Response for unknown request id %r from '%s'", message_id, self.name)
                return
            if not pending.future.done():
                pending.future.set_result(message)
            return

        if message_id is not None:
            self._answer_peer_request(message_id, method)
            return

        handler = self._notification_handlers.get(method)
        if handler is None:
            LOGGER.debug("Discarding notification '%s' from '%s'", method, self.name)
            return
        try:
            outcome = handler(message.get("params") or {})
        except Exception:  # pylint: disable=broad-exception-caught
            LOGGER.exception("Notification handler for '%s' failed", method)
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._handler_tasks.add(task)
            task.add_done_callback(lambda done: self._handler_finished(method, done))

    def _handler_finished(self, method: str, task: "asyncio.Future[Any]") -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Notification handler for '%s' failed: %s", method, exc, exc_info=exc)

    def _answer_peer_request(self, message_id: Any, method: str) -> None:
        if method == "ping":
            reply: Dict[str, Any] = {"jsonrpc": "2.0", "id": message_id, "result": {}}
        else:
            reply = {
                "jsonrpc": "2.0",
                "id": message_id,
                "error": {"code": METHOD_NOT_FOUND, "message": f"Method not supported: {method}"},
            }
        if self._closed:
            return
        try:
            self._writer.write(encode_record(reply))
        except (BrokenPipeError, ConnectionResetError, RuntimeError) as exc:
            LOGGER.debug("Could not answer '%s' from '%s': %s", method, self.name, exc)

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            if not entry.future.done():
                entry.future.set_exception(BridgeClosed(self.name, reason))
