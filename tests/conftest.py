"""
Shared pytest configuration.

This file ensures the project root is on sys.path so that `import services`
works consistently in all tests, and provides in-memory stand-ins for the
tool-server stream and the model service.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List

# Ensure project root is importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from services.mcp.frame_codec import decode_record, encode_record  # noqa: E402


class FakeStdin:
    """Captures records written by a bridge, like a subprocess stdin pipe."""

    def __init__(self) -> None:
        self.buffer = b""
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.closed:
            raise BrokenPipeError("stdin closed")
        self.buffer += data

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    def messages(self) -> List[Dict[str, Any]]:
        return [decode_record(line) for line in self.buffer.split(b"\n") if line]

    def requests(self, method: str = None) -> List[Dict[str, Any]]:
        return [
            message
            for message in self.messages()
            if "id" in message and "method" in message and (method is None or message["method"] == method)
        ]


def respond(reader: asyncio.StreamReader, request_id: Any, result: Dict[str, Any]) -> None:
    reader.feed_data(encode_record({"jsonrpc": "2.0", "id": request_id, "result": result}))


def respond_error(reader: asyncio.StreamReader, request_id: Any, code: int, message: str) -> None:
    reader.feed_data(
        encode_record({"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}})
    )


async def wait_for_requests(stdin: FakeStdin, count: int, method: str = None) -> List[Dict[str, Any]]:
    """Yield to the loop until ``count`` requests have been written."""
    for _ in range(200):
        found = stdin.requests(method)
        if len(found) >= count:
            return found
        await asyncio.sleep(0)
    raise AssertionError(f"expected {count} requests, saw {len(stdin.requests(method))}")
