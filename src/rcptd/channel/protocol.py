"""
Wire codec for the privilege-separation channel.

Every frame is one JSON object on one line, terminated by ``\\n`` and no
longer than ``max_frame_size`` bytes including the newline::

    -> {"id": 7, "address": "bob@example.com", "hint": null}
    <- {"id": 7, "status": "deliverable", "reason": null, "diagnostic": "matched=.qmail owner=bob directive=delivery"}

Responses carry the request id so that many requests can be in flight on
one connection and answered out of order. Decoding failures raise
[ChannelProtocolError][rcptd.core.exceptions.ChannelProtocolError] with the
request id attached whenever it could be recovered.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any

from rcptd.core.exceptions import ChannelProtocolError
from rcptd.models import Reason, Verdict, VerdictStatus


MAX_FRAME_SIZE = 4096


@dataclass(frozen=True, slots=True)
class ChannelRequest:
    id: int
    address: str
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class ChannelResponse:
    """One answer on the channel; ``id`` is ``None`` for unattributable errors."""

    id: int | None
    status: VerdictStatus
    reason: str | None = None
    diagnostic: str | None = None

    @classmethod
    def from_verdict(cls, request_id: int | None, verdict: Verdict) -> ChannelResponse:
        reason = str(verdict.reason) if verdict.reason is not None else None
        return cls(request_id, verdict.status, reason, verdict.diagnostic)

    @classmethod
    def malformed(cls, request_id: int | None) -> ChannelResponse:
        return cls(request_id, VerdictStatus.UNDELIVERABLE, Reason.MALFORMED_REQUEST)

    def to_verdict(self) -> Verdict:
        return Verdict(self.status, self.reason, detail=self.diagnostic)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _dump(obj: dict[str, Any], max_frame_size: int) -> bytes:
    frame = json.dumps(obj, ensure_ascii=False, separators=(",", ":")).encode() + b"\n"
    if len(frame) > max_frame_size:
        raise ChannelProtocolError(
            f"Frame of {len(frame)} bytes exceeds {max_frame_size}", obj.get("id")
        )
    return frame


def _load(line: bytes, max_frame_size: int) -> dict[str, Any]:
    if len(line) > max_frame_size:
        raise ChannelProtocolError(f"Frame exceeds {max_frame_size} bytes")
    try:
        obj = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise ChannelProtocolError(f"Invalid frame: {e}") from e
    if not isinstance(obj, dict):
        raise ChannelProtocolError("Frame is not a JSON object")
    return obj


def _request_id(obj: dict[str, Any]) -> int | None:
    value = obj.get("id")
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


def _optional_str(obj: dict[str, Any], name: str, request_id: int | None) -> str | None:
    value = obj.get(name)
    if value is not None and not isinstance(value, str):
        raise ChannelProtocolError(f"Field {name!r} must be a string or null", request_id)
    return value


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


def encode_request(request: ChannelRequest, max_frame_size: int = MAX_FRAME_SIZE) -> bytes:
    return _dump(
        {"id": request.id, "address": request.address, "hint": request.hint},
        max_frame_size,
    )


def decode_request(line: bytes, max_frame_size: int = MAX_FRAME_SIZE) -> ChannelRequest:
    """Decode one request frame.

    Raises:
        ChannelProtocolError: On any malformed frame. ``request_id`` is set
            when the frame carried a usable id.
    """
    obj = _load(line, max_frame_size)
    request_id = _request_id(obj)
    if request_id is None:
        raise ChannelProtocolError("Missing or invalid request id")
    address = obj.get("address")
    if not isinstance(address, str) or not address:
        raise ChannelProtocolError("Missing or invalid address", request_id)
    hint = _optional_str(obj, "hint", request_id)
    return ChannelRequest(request_id, address, hint or None)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def encode_response(response: ChannelResponse, max_frame_size: int = MAX_FRAME_SIZE) -> bytes:
    obj = {
        "id": response.id,
        "status": str(response.status),
        "reason": response.reason,
        "diagnostic": response.diagnostic,
    }
    try:
        return _dump(obj, max_frame_size)
    except ChannelProtocolError:
        # Diagnostics are optional; drop them before giving up on the frame.
        return _dump({**obj, "diagnostic": None}, max_frame_size)


def decode_response(line: bytes, max_frame_size: int = MAX_FRAME_SIZE) -> ChannelResponse:
    """Decode one response frame.

    Raises:
        ChannelProtocolError: On any malformed frame.
    """
    obj = _load(line, max_frame_size)
    request_id = _request_id(obj)
    try:
        status = VerdictStatus(obj.get("status"))
    except ValueError:
        raise ChannelProtocolError("Missing or invalid status", request_id) from None
    reason = _optional_str(obj, "reason", request_id)
    diagnostic = _optional_str(obj, "diagnostic", request_id)
    if status != VerdictStatus.DELIVERABLE and not reason:
        raise ChannelProtocolError(f"{status} response without a reason", request_id)
    return ChannelResponse(request_id, status, reason or None, diagnostic or None)


# ---------------------------------------------------------------------------
# Stream framing
# ---------------------------------------------------------------------------


async def read_line(reader: asyncio.StreamReader) -> bytes | None:
    """Read one ``\\n``-terminated line from ``reader``.

    Returns ``b""`` at end of stream, the unterminated tail if the peer
    closed mid-line, and ``None`` for a line longer than the reader's limit.
    An overlong line is consumed through its newline even when the rest of
    it has not arrived yet, so it yields exactly one ``None``.
    """
    try:
        return await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as e:
        return e.partial
    except asyncio.LimitOverrunError as e:
        await _discard_line(reader, e.consumed)
        return None


async def _discard_line(reader: asyncio.StreamReader, consumed: int) -> None:
    while True:
        await reader.readexactly(consumed)
        try:
            await reader.readuntil(b"\n")
        except asyncio.IncompleteReadError:
            return
        except asyncio.LimitOverrunError as e:
            consumed = e.consumed
        else:
            return
