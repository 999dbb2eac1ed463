"""Tests for BridgeContext and the setup/run/runresult/set primitives."""

import os
import socket

import pytest

from pybridge.config import BridgeConfig
from pybridge.errors import NotStartedError, ProtocolError, RemoteError
from pybridge.primitives import BridgeContext
from pybridge.worker.session import STDERR_PREFIX, Session

from conftest import FakeProcess


def _fake_session(sink):
    host, peer = socket.socketpair()
    return Session(FakeProcess(), host, sink=sink), peer


class TestWithoutCompanion:
    """Context state handling that needs no real process."""

    def test_calls_before_setup_fail(self, sink):
        ctx = BridgeContext(config=BridgeConfig(), sink=sink)
        for call in (lambda: ctx.run("x = 1"), lambda: ctx.runresult("1"), lambda: ctx.set("x", 1)):
            with pytest.raises(NotStartedError, match="setup"):
                call()
        assert not ctx.started

    def test_replace_closes_previous_session(self, sink):
        ctx = BridgeContext(config=BridgeConfig(), sink=sink)
        first, first_peer = _fake_session(sink)
        second, second_peer = _fake_session(sink)
        try:
            ctx.replace(first)
            ctx.replace(second)
            assert first.closed
            assert first.process.terminate_calls == 1
            assert ctx.session is second
        finally:
            ctx.close()
            first_peer.close()
            second_peer.close()

    def test_close_is_idempotent(self, sink):
        ctx = BridgeContext(config=BridgeConfig(), sink=sink)
        session, peer = _fake_session(sink)
        ctx.replace(session)
        ctx.close()
        ctx.close()
        assert session.closed
        assert not ctx.started
        with pytest.raises(NotStartedError):
            ctx.run("x")
        peer.close()

    def test_context_manager_closes(self, sink):
        session, peer = _fake_session(sink)
        with BridgeContext(config=BridgeConfig(), sink=sink) as ctx:
            ctx.replace(session)
        assert session.closed
        peer.close()


@pytest.mark.integration
class TestWithCompanion:
    """End-to-end calls against a real companion process."""

    def test_run_then_runresult(self, context):
        context.setup()
        context.run("x = 2 + 2")
        assert context.runresult("x") == 4.0

    def test_set_then_use(self, context):
        context.setup()
        context.set("y", [1, 2, 3])
        assert context.runresult("sum(y)") == 6.0

    def test_set_strings_and_mappings(self, context):
        context.setup()
        context.set("name", 'say "hi"')
        context.set("opts", {"a": 1, "flag": True, "nothing": None})
        assert context.runresult("name") == 'say "hi"'
        assert context.runresult("opts['flag'] and opts['nothing'] is None") is True

    def test_remote_error_then_recover(self, context):
        context.setup()
        with pytest.raises(RemoteError) as exc_info:
            context.run("raise Exception('boom')")
        assert "boom" in exc_info.value.message
        assert "Traceback" in exc_info.value.remote_traceback

        context.run("z = 1")
        assert context.runresult("z + 1") == 2.0

    def test_syntax_error_is_remote(self, context):
        context.setup()
        with pytest.raises(RemoteError, match="SyntaxError"):
            context.runresult("1 +")

    def test_multi_line_statement(self, context):
        context.setup()
        context.run("def double(v):", "    return v * 2")
        assert context.runresult("double(21)") == 42.0

    def test_dict_result_becomes_pairs(self, context):
        context.setup()
        assert context.runresult("{'a': 1, 'b': [True, None]}") == [["a", 1.0], ["b", [True, None]]]

    def test_stdout_forwarded(self, context, sink):
        context.setup()
        context.run("print('hello from companion')")
        assert "hello from companion" in sink.chunks

    def test_large_output_does_not_block(self, context, sink):
        context.setup()
        context.run("print('x' * 200000)")
        assert sink.chunks == ["x" * 200000]
        assert context.runresult("1 + 1") == 2.0

    def test_stderr_forwarded_with_prefix(self, context, sink):
        context.setup()
        context.run("import sys", "sys.stderr.write('careful\\n')")
        assert STDERR_PREFIX + "careful" in sink.chunks

    def test_runs_in_model_dir(self, context, tmp_path):
        context.setup()
        assert os.path.realpath(context.runresult("__import__('os').getcwd()")) == os.path.realpath(tmp_path)

    def test_second_setup_replaces_first(self, context):
        context.setup()
        old = context.session
        context.run("marker = 1")

        context.setup()

        assert old.closed
        assert old.process.poll() is not None
        with pytest.raises(RemoteError, match="NameError"):
            context.runresult("marker")

    def test_companion_killed(self, context):
        context.setup()
        context.session.process.kill()
        context.session.process.wait()

        with pytest.raises(ProtocolError, match="quit unexpectedly"):
            context.runresult("1")
