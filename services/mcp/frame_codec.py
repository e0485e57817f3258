"""Newline-delimited JSON-RPC framing for tool-server byte streams.

Records are UTF-8 JSON objects terminated by a single ``\\n``. Chunks read
from a pipe can end anywhere, so the codec keeps the unterminated tail
between calls and only ever holds that one partial record.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Iterator, List, Tuple

from services.errors import FrameDecodeError

LOGGER = logging.getLogger(__name__)

DELIMITER = b"\n"


def split_records(data: bytes) -> Tuple[List[bytes], bytes]:
    """Split ``data`` into complete records and the unterminated remainder."""
    *records, remainder = data.split(DELIMITER)
    return records, remainder


def decode_record(line: bytes) -> Dict[str, Any]:
    """Parse one record into a JSON-RPC message dictionary.

    Raises:
        FrameDecodeError: If the record is not UTF-8 JSON or not an object.
    """
    try:
        message = json.loads(line.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise FrameDecodeError(line, "invalid utf-8") from exc
    except json.JSONDecodeError as exc:
        raise FrameDecodeError(line, f"invalid json at column {exc.colno}") from exc
    if not isinstance(message, dict):
        raise FrameDecodeError(line, "record is not a JSON object")
    return message


def encode_record(message: Dict[str, Any]) -> bytes:
    """Serialize a message as a single terminated record."""
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8") + DELIMITER


class FrameCodec:
    """Incremental decoder that turns arbitrary chunks into messages."""

    def __init__(self) -> None:
        self._parts: List[bytes] = []

    @property
    def remainder(self) -> bytes:
        """Bytes of the record currently being assembled."""
        return b"".join(self._parts)

    def feed(self, chunk: bytes) -> List[Dict[str, Any]]:
        """Consume a chunk and return every message it completes.

        Malformed records are logged and skipped; they never stop the stream.
        """
        if not chunk:
            return []
        if DELIMITER not in chunk:
            self._parts.append(chunk)
            return []
        # Only the first record can span earlier chunks.
        records, tail = split_records(chunk)
        if self._parts:
            self._parts.append(records[0])
            records[0] = b"".join(self._parts)
        self._parts = [tail] if tail else []
        messages = []
        for record in records:
            record = record.rstrip(b"\r")
            if not record.strip():
                continue
            try:
                messages.append(decode_record(record))
            except FrameDecodeError as exc:
                LOGGER.warning("Dropping malformed tool-server record: %s", exc)
        return messages


def iter_messages(chunks: Iterable[bytes]) -> Iterator[Dict[str, Any]]:
    """Lazily yield messages decoded from an iterable of byte chunks."""
    codec = FrameCodec()
    for chunk in chunks:
        yield from codec.feed(chunk)
