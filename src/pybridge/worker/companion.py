#!/usr/bin/env python3
"""
Standalone companion script executed by the interpreter the host launches.

This module MUST remain standalone with NO pybridge imports. It runs under
whatever interpreter the user asked for (``python3``, a venv python, a
conda env...), and that interpreter usually does not have pybridge
installed. The wire protocol is therefore inlined here.

Usage:
    <python> companion.py <port>

The script binds a server socket on localhost:<port>, accepts exactly one
connection and then serves requests until the connection is closed:

    request:  [1 byte tag][4-byte BE length][utf-8 payload] (x1, or x2 for assignment)
              tag 0 = statement, 1 = expression, 2 = assignment (name, value)
    response: [1 byte status]
              status 0 = success (+ one JSON payload for expressions)
              status 1 = error (+ message payload + traceback payload)

Statements and expressions run in one persistent namespace. stdout and
stderr are flushed before every response so the host can forward them.
"""

import ast
import builtins
import json
import logging
import os
import socket
import struct
import sys
import traceback
from typing import Any, BinaryIO, Dict, Optional

# -----------------------------------------------------------------------------
# Logging (stderr only; stdout belongs to user code)
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=os.environ.get("PYBRIDGE_COMPANION_LOG_LEVEL", "WARNING").upper(),
    format="%(asctime)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("companion")

# -----------------------------------------------------------------------------
# Wire protocol
# -----------------------------------------------------------------------------

STATEMENT = 0
EXPRESSION = 1
ASSIGNMENT = 2

SUCCESS = 0
ERROR = 1

_LENGTH = struct.Struct(">i")


class ChannelClosed(Exception):
    """The host closed the connection."""


class CompanionProtocol:
    def __init__(self, reader: BinaryIO, writer: BinaryIO):
        self._in = reader
        self._out = writer

    def _read_exactly(self, n: int) -> bytes:
        chunks = []
        remaining = n
        while remaining > 0:
            b = self._in.read(remaining)
            if not b:
                raise ChannelClosed(f"connection closed ({n - remaining}/{n} bytes)")
            chunks.append(b)
            remaining -= len(b)
        return b"".join(chunks)

    def read_tag(self) -> int:
        return self._read_exactly(1)[0]

    def read_string(self) -> str:
        (length,) = _LENGTH.unpack(self._read_exactly(4))
        if length < 0:
            # Stream is out of sync; nothing after this can be trusted
            raise ChannelClosed(f"invalid payload length: {length}")
        return self._read_exactly(length).decode("utf-8")

    def _write_string(self, text: str) -> None:
        data = text.encode("utf-8")
        self._out.write(_LENGTH.pack(len(data)))
        self._out.write(data)

    def send_success(self, payload: Optional[str] = None) -> None:
        self._out.write(bytes([SUCCESS]))
        if payload is not None:
            self._write_string(payload)
        self._out.flush()

    def send_error(self, message: str, tb: str) -> None:
        self._out.write(bytes([ERROR]))
        self._write_string(message)
        self._write_string(tb)
        self._out.flush()


# -----------------------------------------------------------------------------
# Value conversion
# -----------------------------------------------------------------------------

_LITERAL_NAMES = {
    "true": True,
    "false": False,
    "null": None,
    "None": None,
    "True": True,
    "False": False,
}


def _literal(node: ast.AST) -> Any:
    if isinstance(node, ast.Constant) and isinstance(node.value, (str, int, float, bool, type(None))):
        return node.value
    if isinstance(node, ast.Name) and node.id in _LITERAL_NAMES:
        return _LITERAL_NAMES[node.id]
    if isinstance(node, (ast.List, ast.Tuple)):
        return [_literal(elt) for elt in node.elts]
    if isinstance(node, ast.Dict):
        return {_literal(k): _literal(v) for k, v in zip(node.keys, node.values)}
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.USub, ast.UAdd)):
        operand = _literal(node.operand)
        if isinstance(operand, (int, float)) and not isinstance(operand, bool):
            return -operand if isinstance(node.op, ast.USub) else operand
    raise ValueError(f"Unsupported value literal: {ast.dump(node)}")


def parse_value(text: str) -> Any:
    """Parse a value sent by the host without evaluating arbitrary code."""
    return _literal(ast.parse(text.strip(), mode="eval").body)


class _ResultEncoder(json.JSONEncoder):
    def default(self, o: Any) -> Any:
        if isinstance(o, (set, frozenset)):
            return list(o)
        # numpy arrays and scalars
        if hasattr(o, "tolist"):
            return o.tolist()
        # pandas frames and series
        if hasattr(o, "to_dict"):
            return o.to_dict()
        return str(o)


def dump_value(value: Any) -> str:
    return json.dumps(value, cls=_ResultEncoder)


# -----------------------------------------------------------------------------
# Request handling
# -----------------------------------------------------------------------------

class Companion:
    """Executes host requests in a persistent namespace."""

    def __init__(self, protocol: CompanionProtocol):
        self.protocol = protocol
        self.namespace: Dict[str, Any] = {"__name__": "__main__", "__builtins__": builtins}

    def execute(self, statement: str) -> None:
        exec(compile(statement, "<string>", "exec"), self.namespace)

    def evaluate(self, expression: str) -> str:
        return dump_value(eval(compile(expression, "<string>", "eval"), self.namespace))

    def assign(self, name: str, value_text: str) -> None:
        self.namespace[name] = parse_value(value_text)

    def handle_one(self) -> None:
        tag = self.protocol.read_tag()
        if tag == ASSIGNMENT:
            name = self.protocol.read_string()
            value_text = self.protocol.read_string()
        else:
            code = self.protocol.read_string()

        payload = None
        try:
            if tag == STATEMENT:
                self.execute(code)
            elif tag == EXPRESSION:
                payload = self.evaluate(code)
            elif tag == ASSIGNMENT:
                self.assign(name, value_text)
            else:
                raise ValueError(f"Unknown message type: {tag}")
        except Exception as e:
            _flush_std_streams()
            message = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            self.protocol.send_error(message, traceback.format_exc())
            return

        _flush_std_streams()
        self.protocol.send_success(payload)

    def serve_forever(self) -> None:
        while True:
            try:
                self.handle_one()
            except ChannelClosed as e:
                logger.info("Channel closed (%s); exiting", e)
                break


def _flush_std_streams() -> None:
    sys.stdout.flush()
    sys.stderr.flush()


# -----------------------------------------------------------------------------
# Main loop
# -----------------------------------------------------------------------------

def main() -> None:
    if len(sys.argv) != 2:
        print("usage: companion.py <port>", file=sys.stderr)
        sys.exit(2)
    port = int(sys.argv[1])

    server = socket.create_server(("localhost", port))
    try:
        logger.info("Listening on localhost:%d", port)
        conn, _ = server.accept()
    finally:
        server.close()

    with conn:
        reader = conn.makefile("rb")
        writer = conn.makefile("wb")
        try:
            Companion(CompanionProtocol(reader, writer)).serve_forever()
        except (ConnectionError, BrokenPipeError):
            logger.info("Connection dropped; exiting")
        finally:
            reader.close()
            try:
                writer.close()
            except OSError as e:
                logger.debug("Error closing writer: %s", e)


if __name__ == "__main__":
    main()
