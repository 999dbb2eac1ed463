"""Tests for the binary framing codec."""

from io import BytesIO

import pytest

from pybridge.errors import ProtocolError
from pybridge.worker import wire
from pybridge.worker.wire import (
    ASSIGNMENT,
    EXPRESSION,
    STATEMENT,
    WireProtocol,
    encode_message,
    encode_string,
)


class RecordingStream(BytesIO):
    """BytesIO that counts flushes."""

    def __init__(self):
        super().__init__()
        self.flushes = 0

    def flush(self):
        self.flushes += 1
        super().flush()


class BrokenStream:
    """Stream whose reads fail like a reset connection."""

    def read(self, n):
        raise ConnectionResetError("connection reset by peer")


class TestEncoding:
    """Test message encoding."""

    def test_statement_layout(self):
        assert encode_message(STATEMENT, "hello") == b"\x00\x00\x00\x00\x05hello"

    def test_expression_tag(self):
        assert encode_message(EXPRESSION, "x")[:1] == b"\x01"

    def test_assignment_carries_name_then_value(self):
        data = encode_message(ASSIGNMENT, "y", "[1, 2]")
        assert data == b"\x02" + b"\x00\x00\x00\x01y" + b"\x00\x00\x00\x06[1, 2]"

    def test_length_counts_utf8_bytes(self):
        assert encode_string("é") == b"\x00\x00\x00\x02" + "é".encode("utf-8")

    def test_empty_payload(self):
        assert encode_string("") == b"\x00\x00\x00\x00"

    def test_lone_surrogate_rejected(self):
        with pytest.raises(ValueError, match="not valid UTF-8") as exc_info:
            encode_string("\ud800")
        assert not isinstance(exc_info.value, UnicodeEncodeError)

    def test_payload_too_large(self, monkeypatch):
        monkeypatch.setattr(wire, "MAX_PAYLOAD", 3)
        with pytest.raises(ValueError, match="too large"):
            encode_string("abcd")


class TestWireProtocol:
    """Test reading and writing over streams."""

    def test_send_statement_writes_and_flushes(self):
        out = RecordingStream()
        protocol = WireProtocol(BytesIO(), out)
        protocol.send_statement("x = 1")
        assert out.getvalue() == encode_message(STATEMENT, "x = 1")
        assert out.flushes == 1

    def test_send_assignment(self):
        out = RecordingStream()
        WireProtocol(BytesIO(), out).send_assignment("name", '"value"')
        assert out.getvalue() == encode_message(ASSIGNMENT, "name", '"value"')

    def test_read_status_and_string(self):
        protocol = WireProtocol(BytesIO(b"\x00" + encode_string("42")), BytesIO())
        assert protocol.read_status() == 0
        assert protocol.read_string() == "42"

    def test_read_large_string(self):
        text = "x" * 100000
        protocol = WireProtocol(BytesIO(encode_string(text)), BytesIO())
        assert protocol.read_string() == text

    def test_eof_before_status(self):
        protocol = WireProtocol(BytesIO(b""), BytesIO())
        with pytest.raises(ProtocolError, match="quit unexpectedly"):
            protocol.read_status()

    def test_eof_inside_length(self):
        protocol = WireProtocol(BytesIO(b"\x00\x00"), BytesIO())
        with pytest.raises(ProtocolError, match="quit unexpectedly"):
            protocol.read_string()

    def test_eof_inside_payload(self):
        # Length says 16 bytes, only 3 arrive
        protocol = WireProtocol(BytesIO(b"\x00\x00\x00\x10abc"), BytesIO())
        with pytest.raises(ProtocolError, match="quit unexpectedly"):
            protocol.read_string()

    def test_negative_length(self):
        protocol = WireProtocol(BytesIO(b"\xff\xff\xff\xff"), BytesIO())
        with pytest.raises(ProtocolError, match="Invalid payload length"):
            protocol.read_string()

    def test_invalid_utf8(self):
        protocol = WireProtocol(BytesIO(b"\x00\x00\x00\x02\xff\xfe"), BytesIO())
        with pytest.raises(ProtocolError, match="encoding"):
            protocol.read_string()

    def test_read_error_becomes_protocol_error(self):
        protocol = WireProtocol(BrokenStream(), BytesIO())
        with pytest.raises(ProtocolError, match="quit unexpectedly"):
            protocol.read_status()

    def test_consecutive_messages(self):
        data = b"\x00" + b"\x01" + encode_string("msg") + encode_string("tb")
        protocol = WireProtocol(BytesIO(data), BytesIO())
        assert protocol.read_status() == 0
        assert protocol.read_status() == 1
        assert protocol.read_string() == "msg"
        assert protocol.read_string() == "tb"
