"""Binary framing for the companion channel.

Every message starts with a one-byte tag. Each textual payload is preceded
by its length as a 4-byte big-endian signed integer, followed by that many
UTF-8 bytes. Reads are blocking and exact: a stream that ends before the
expected byte count is treated as the companion process having died.
"""

import logging
import struct
from typing import BinaryIO

from ..errors import ProtocolError

logger = logging.getLogger(__name__)

# Outbound message tags
STATEMENT = 0
EXPRESSION = 1
ASSIGNMENT = 2

# Inbound status tags
SUCCESS = 0
ERROR = 1

TAG_SIZE = 1
LENGTH_SIZE = 4
MAX_PAYLOAD = 2**31 - 1

_LENGTH = struct.Struct(">i")

QUIT_MESSAGE = "Python process quit unexpectedly"


def encode_string(text: str) -> bytes:
    """Encode one length-prefixed UTF-8 payload.

    Raises:
        ValueError: If the text is not encodable as UTF-8 (lone surrogates)
            or does not fit a signed 32-bit length
    """
    try:
        data = text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ValueError(f"Payload is not valid UTF-8 text: {e.reason} at position {e.start}") from e
    if len(data) > MAX_PAYLOAD:
        raise ValueError(f"Payload too large: {len(data)} bytes (max {MAX_PAYLOAD})")
    return _LENGTH.pack(len(data)) + data


def encode_message(tag: int, *payloads: str) -> bytes:
    """Encode a full outbound message: tag byte followed by its payloads."""
    return bytes([tag]) + b"".join(encode_string(p) for p in payloads)


class WireProtocol:
    """Reads and writes framed messages over a pair of binary streams.

    The streams are normally the reader/writer halves of a socket created
    with ``socket.makefile``, but any blocking binary file objects work.
    """

    def __init__(self, input_stream: BinaryIO, output_stream: BinaryIO):
        """Initialize protocol handler.

        Args:
            input_stream: Binary stream responses are read from
            output_stream: Binary stream messages are written to
        """
        self.input_stream = input_stream
        self.output_stream = output_stream

    def send_statement(self, statement: str) -> None:
        self._write_message(STATEMENT, statement)

    def send_expression(self, expression: str) -> None:
        self._write_message(EXPRESSION, expression)

    def send_assignment(self, name: str, value_text: str) -> None:
        self._write_message(ASSIGNMENT, name, value_text)

    def read_status(self) -> int:
        """Read the one-byte status tag of a response."""
        return self._read_exactly(TAG_SIZE)[0]

    def read_int(self) -> int:
        return _LENGTH.unpack(self._read_exactly(LENGTH_SIZE))[0]

    def read_string(self) -> str:
        """Read one length-prefixed UTF-8 payload.

        Raises:
            ProtocolError: On EOF, negative length or invalid UTF-8
        """
        length = self.read_int()
        if length < 0:
            raise ProtocolError(f"Invalid payload length: {length}")
        data = self._read_exactly(length)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Invalid payload encoding: {e}") from e

    def _read_exactly(self, n: int) -> bytes:
        # read() may return fewer bytes than requested, so loop until done
        chunks = []
        remaining = n
        while remaining > 0:
            try:
                chunk = self.input_stream.read(remaining)
            except (OSError, ValueError) as e:
                # ValueError: stream closed by a concurrent terminate()
                raise ProtocolError(QUIT_MESSAGE) from e
            if not chunk:
                logger.debug(f"Stream closed after {n - remaining}/{n} bytes")
                raise ProtocolError(QUIT_MESSAGE)
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def _write_message(self, tag: int, *payloads: str) -> None:
        data = encode_message(tag, *payloads)
        logger.debug(f"Sending message tag={tag} ({len(data)} bytes)")
        try:
            self.output_stream.write(data)
            self.output_stream.flush()
        except (OSError, ValueError) as e:
            raise ProtocolError(QUIT_MESSAGE) from e
