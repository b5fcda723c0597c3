"""
Unit tests for channel.protocol module.

Tests:
- Request and response framing
- Rejection of malformed frames with request id recovery
- Frame size limits and diagnostic dropping
- Verdict conversion
- Line reading with overlong lines discarded whole
"""

import asyncio
import json

import pytest

from rcptd.core.exceptions import ChannelProtocolError
from rcptd.models import Reason, Verdict, VerdictStatus
from rcptd.channel.protocol import (
    ChannelRequest,
    ChannelResponse,
    decode_request,
    decode_response,
    encode_request,
    encode_response,
    read_line,
)


class TestRequests:
    """Request frames."""

    def test_encode(self):
        frame = encode_request(ChannelRequest(7, "bob@example.com"))
        assert frame == b'{"id":7,"address":"bob@example.com","hint":null}\n'

    def test_decode(self):
        request = decode_request(b'{"id": 3, "address": "bob@example.com", "hint": "t"}\n')
        assert request == ChannelRequest(3, "bob@example.com", "t")

    def test_empty_hint_is_none(self):
        assert decode_request(b'{"id":1,"address":"a@b","hint":""}').hint is None

    def test_non_ascii(self):
        frame = encode_request(ChannelRequest(1, "jörg@example.com"))
        assert decode_request(frame).address == "jörg@example.com"

    @pytest.mark.parametrize(
        "line",
        [
            b"not json\n",
            b"[1, 2]\n",
            b'{"address": "a@b"}\n',
            b'{"id": -1, "address": "a@b"}\n',
            b'{"id": true, "address": "a@b"}\n',
            b'{"id": "1", "address": "a@b"}\n',
            b"\xff\xfe\n",
        ],
    )
    def test_malformed_without_id(self, line):
        with pytest.raises(ChannelProtocolError) as exc:
            decode_request(line)
        assert exc.value.request_id is None

    @pytest.mark.parametrize(
        "line",
        [
            b'{"id": 9}\n',
            b'{"id": 9, "address": ""}\n',
            b'{"id": 9, "address": 5}\n',
            b'{"id": 9, "address": "a@b", "hint": 4}\n',
        ],
    )
    def test_malformed_with_id(self, line):
        with pytest.raises(ChannelProtocolError) as exc:
            decode_request(line)
        assert exc.value.request_id == 9

    def test_oversized(self):
        line = json.dumps({"id": 1, "address": "a" * 5000}).encode()
        with pytest.raises(ChannelProtocolError, match="exceeds"):
            decode_request(line)

    def test_encode_oversized(self):
        with pytest.raises(ChannelProtocolError):
            encode_request(ChannelRequest(1, "a" * 600), max_frame_size=512)


class TestResponses:
    """Response frames."""

    def test_round_trip_fields(self):
        response = ChannelResponse(4, VerdictStatus.UNDELIVERABLE, "bounce", "matched=.qmail owner=bob")
        assert decode_response(encode_response(response)) == response

    def test_deliverable_without_reason(self):
        response = decode_response(b'{"id":1,"status":"deliverable","reason":null,"diagnostic":null}')
        assert response.reason is None
        assert response.status == VerdictStatus.DELIVERABLE

    def test_reason_required_for_negative(self):
        with pytest.raises(ChannelProtocolError, match="without a reason") as exc:
            decode_response(b'{"id":2,"status":"deferred","reason":null}')
        assert exc.value.request_id == 2

    def test_unknown_status(self):
        with pytest.raises(ChannelProtocolError, match="status"):
            decode_response(b'{"id":2,"status":"maybe","reason":"x"}')

    def test_diagnostic_dropped_when_too_large(self):
        response = ChannelResponse(1, VerdictStatus.DELIVERABLE, None, "x" * 1000)
        frame = encode_response(response, max_frame_size=512)
        assert decode_response(frame, max_frame_size=512).diagnostic is None

    def test_unattributed_malformed(self):
        frame = encode_response(ChannelResponse.malformed(None))
        decoded = decode_response(frame)
        assert decoded.id is None
        assert decoded.reason == Reason.MALFORMED_REQUEST


class TestVerdictConversion:
    """ChannelResponse <-> Verdict."""

    def test_from_verdict(self):
        verdict = Verdict.deliverable(matched=".qmail-default", owner="vhost", catchall=True)
        response = ChannelResponse.from_verdict(5, verdict)
        assert response.id == 5
        assert response.diagnostic == "matched=.qmail-default owner=vhost catchall=yes"

    def test_to_verdict_keeps_diagnostic(self):
        verdict = ChannelResponse(5, VerdictStatus.DEFERRED, "timeout", None).to_verdict()
        assert verdict == Verdict.deferred(Reason.TIMEOUT)

    def test_to_verdict_detail(self):
        verdict = ChannelResponse(5, VerdictStatus.DELIVERABLE, None, "matched=.qmail").to_verdict()
        assert verdict.diagnostic == "matched=.qmail"


class TestReadLine:
    """read_line() framing over a StreamReader."""

    def _reader(self, *chunks, eof=True, limit=16):
        reader = asyncio.StreamReader(limit=limit)
        for chunk in chunks:
            reader.feed_data(chunk)
        if eof:
            reader.feed_eof()
        return reader

    async def test_lines_and_eof(self):
        reader = self._reader(b"one\ntwo\n")
        assert await read_line(reader) == b"one\n"
        assert await read_line(reader) == b"two\n"
        assert await read_line(reader) == b""

    async def test_unterminated_tail(self):
        assert await read_line(self._reader(b"tail")) == b"tail"

    async def test_overlong_with_newline_buffered(self):
        reader = self._reader(b"x" * 40 + b"\nok\n")
        assert await read_line(reader) is None
        assert await read_line(reader) == b"ok\n"

    async def test_overlong_completed_later(self):
        reader = self._reader(b"x" * 40, eof=False)
        task = asyncio.create_task(read_line(reader))
        await asyncio.sleep(0.01)
        assert not task.done()
        reader.feed_data(b"y" * 40 + b"\nok\n")
        reader.feed_eof()
        assert await asyncio.wait_for(task, 2) is None
        assert await read_line(reader) == b"ok\n"
        assert await read_line(reader) == b""

    async def test_overlong_at_eof(self):
        reader = self._reader(b"x" * 40)
        assert await read_line(reader) is None
        assert await read_line(reader) == b""
