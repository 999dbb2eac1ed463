"""A live connection to one companion process."""

import logging
import os
import select
import socket
import subprocess
import threading
from typing import IO, Any, Iterable

from ..errors import ProtocolError, RemoteError
from ..output import ConsoleSink, OutputSink
from .interchange import from_interchange_text, to_interchange_text
from .wire import ERROR, QUIT_MESSAGE, SUCCESS, WireProtocol

logger = logging.getLogger(__name__)

STDERR_PREFIX = "Python error output:\n"


def join_lines(fragments: Iterable[str]) -> str:
    """Join several source fragments into one payload."""
    return "\n".join(fragments)


def _read_ready_bytes(stream: IO[bytes] | None) -> bytes:
    if stream is None or stream.closed:
        return b""
    fd = stream.fileno()
    chunks = []
    while select.select([fd], [], [], 0)[0]:
        chunk = os.read(fd, 65536)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


def read_all_ready(stream: IO[bytes] | None) -> str:
    """Read whatever is already buffered in a pipe without blocking.

    Args:
        stream: Binary pipe from the child process (may be None)

    Returns:
        Decoded text currently available, possibly empty
    """
    return _read_ready_bytes(stream).decode("utf-8", errors="replace")


class Session:
    """Pairs a companion process with its socket channel.

    Every call blocks until the full response has been read or the channel
    fails. Only one call may be in flight; a lock serializes callers from
    different threads. There is no timeout: a hung companion blocks the
    caller until the process is killed.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        sock: socket.socket,
        sink: OutputSink | None = None,
    ):
        self.process = process
        self.socket = sock
        self.sink = sink or ConsoleSink()
        self._reader = sock.makefile("rb")
        self._writer = sock.makefile("wb")
        self.protocol = WireProtocol(self._reader, self._writer)
        self._lock = threading.RLock()
        self._closed = False
        # Pipe output read while waiting for a reply, keyed by pipe
        self._pending: dict[IO[bytes], list[bytes]] = {}

    @property
    def closed(self) -> bool:
        return self._closed

    def is_alive(self) -> bool:
        """Check if the companion process is still running."""
        return self.process.poll() is None

    def execute(self, statement: str) -> None:
        """Run a statement in the companion.

        Raises:
            RemoteError: If the statement raised in the companion
            ProtocolError: If the process died mid-call
        """
        with self._lock:
            self.protocol.send_statement(statement)
            self._wait_for_reply()
            status = self._read_status()
            self.forward_output()
            if status != SUCCESS:
                raise self._remote_error()

    def evaluate(self, expression: str) -> Any:
        """Evaluate an expression in the companion and return its value."""
        with self._lock:
            self.protocol.send_expression(expression)
            self._wait_for_reply()
            status = self._read_status()
            self.forward_output()
            if status != SUCCESS:
                raise self._remote_error()
            return from_interchange_text(self.protocol.read_string())

    def assign(self, name: str, value: Any) -> None:
        """Bind a host value to a variable in the companion namespace."""
        value_text = to_interchange_text(value)
        with self._lock:
            self.protocol.send_assignment(name, value_text)
            self._wait_for_reply()
            status = self._read_status()
            self.forward_output()
            if status != SUCCESS:
                raise self._remote_error()

    def _output_pipes(self) -> list[IO[bytes]]:
        return [p for p in (self.process.stdout, self.process.stderr) if p is not None and not p.closed]

    def _wait_for_reply(self) -> None:
        """Block until the socket is readable, reading companion output meanwhile.

        The companion flushes stdout/stderr before it replies. Output larger
        than the OS pipe buffer only drains if the host reads it while waiting.
        """
        pipes = {p.fileno(): p for p in self._output_pipes()}
        try:
            sock_fd = self.socket.fileno()
            while True:
                ready, _, _ = select.select([sock_fd, *pipes], [], [])
                for fd in ready:
                    if fd == sock_fd:
                        continue
                    chunk = os.read(fd, 65536)
                    if chunk:
                        self._pending.setdefault(pipes[fd], []).append(chunk)
                    else:
                        del pipes[fd]
                if sock_fd in ready:
                    return
        except (OSError, ValueError) as e:
            # Socket or pipe closed under us, e.g. by terminate() from another thread
            raise ProtocolError(QUIT_MESSAGE) from e

    def _take_output(self, pipe: IO[bytes] | None) -> str:
        data = b"".join(self._pending.pop(pipe, [])) + _read_ready_bytes(pipe)
        return data.decode("utf-8", errors="replace")

    def forward_output(self) -> None:
        """Send buffered companion stdout/stderr to the output sink."""
        stdout_text = self._take_output(self.process.stdout)
        stderr_text = self._take_output(self.process.stderr)
        if stdout_text:
            self.sink.write(stdout_text.rstrip("\n"))
        if stderr_text:
            self.sink.write(STDERR_PREFIX + stderr_text.rstrip("\n"))

    def _read_status(self) -> int:
        status = self.protocol.read_status()
        logger.debug(f"Received status {status}")
        if status not in (SUCCESS, ERROR):
            raise ProtocolError(f"Unknown response status: {status}")
        return status

    def _remote_error(self) -> RemoteError:
        message = self.protocol.read_string()
        tb = self.protocol.read_string()
        logger.debug(f"Companion reported error: {message}")
        return RemoteError(message, tb)

    def terminate(self) -> None:
        """Stop the process, then close the channel.

        Safe to call while another thread is blocked in a call: the socket is
        shut down first, which wakes that thread with a ProtocolError before
        the buffered streams are closed.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"Socket shutdown failed: {e}")

        if self.is_alive():
            self.process.terminate()
        self.process.wait()

        for stream in (self._reader, self._writer):
            try:
                stream.close()
            except OSError as e:
                logger.debug(f"Error closing channel stream: {e}")
        self.socket.close()
        for pipe in (self.process.stdout, self.process.stderr):
            if pipe is not None:
                pipe.close()
        logger.info(f"Companion pid={self.process.pid} exited with code {self.process.returncode}")

    close = terminate

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info) -> None:
        self.terminate()
