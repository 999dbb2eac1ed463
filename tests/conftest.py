"""Test configuration and shared fixtures for pybridge tests."""

import os
import socket
import sys

import pytest

from pybridge.config import BridgeConfig
from pybridge.output import BufferSink
from pybridge.primitives import BridgeContext
from pybridge.worker.session import Session


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep user config files and PYBRIDGE_* variables out of tests."""
    for key in list(os.environ):
        if key.startswith("PYBRIDGE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("PYBRIDGE_CONFIG", str(tmp_path / "missing-config.yaml"))


@pytest.fixture
def bridge_config():
    """Config that launches the companion with the interpreter running the tests."""
    return BridgeConfig(python_command=[sys.executable], capture_stderr=True)


@pytest.fixture
def sink():
    return BufferSink()


@pytest.fixture
def context(bridge_config, sink, tmp_path):
    """BridgeContext whose companion runs in tmp_path; closed after the test."""
    ctx = BridgeContext(config=bridge_config, model_dir=tmp_path, sink=sink)
    yield ctx
    ctx.close()


class FakeProcess:
    """Stands in for subprocess.Popen when no real companion is needed."""

    def __init__(self, stdout=None, stderr=None):
        self.stdout = stdout
        self.stderr = stderr
        self.pid = 4242
        self.returncode = None
        self.terminate_calls = 0

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminate_calls += 1
        self.returncode = -15

    def kill(self):
        self.returncode = -9

    def wait(self, timeout=None):
        if self.returncode is None:
            self.returncode = 0
        return self.returncode


class FakeCompanion:
    """The companion end of a socketpair, driven by the test.

    Responses are queued with ``respond`` before the host makes its call;
    what the host sent is read back with ``received``.
    """

    def __init__(self, peer: socket.socket):
        self.peer = peer

    def respond(self, data: bytes) -> None:
        self.peer.sendall(data)

    def received(self, n: int) -> bytes:
        self.peer.settimeout(5)
        chunks = []
        remaining = n
        while remaining > 0:
            chunk = self.peer.recv(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def end_output(self) -> None:
        """Stop sending; the host sees EOF after any queued bytes."""
        self.peer.shutdown(socket.SHUT_WR)

    def close(self) -> None:
        self.peer.close()


@pytest.fixture
def fake_pair(sink):
    """A Session wired to a FakeCompanion over a socketpair."""
    host_sock, peer_sock = socket.socketpair()
    process = FakeProcess()
    session = Session(process, host_sock, sink=sink)
    companion = FakeCompanion(peer_sock)
    yield session, companion
    session.terminate()
    companion.close()
