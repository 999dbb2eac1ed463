"""Host-facing primitives: setup, run, runresult and set.

A ``BridgeContext`` owns at most one live Session. Re-running ``setup``
tears the previous companion process down completely before the new one is
installed, so two companions never run side by side for one context.

The module-level functions operate on a process-wide default context that
is closed automatically when the interpreter exits::

    from pybridge import primitives as py

    py.setup("python3")
    py.run("x = 2 + 2")
    py.runresult("x")          # 4.0
    py.set_variable("y", [1, 2, 3])
    py.runresult("sum(y)")     # 6.0
"""

import atexit
import logging
import threading
from pathlib import Path
from typing import Any

from .config import BridgeConfig
from .errors import NotStartedError
from .output import ConsoleSink, OutputSink
from .worker.process_manager import CompanionProcessManager
from .worker.session import Session, join_lines

logger = logging.getLogger(__name__)


class BridgeContext:
    """Explicit owner of the current companion Session."""

    def __init__(
        self,
        config: BridgeConfig | None = None,
        model_dir: Path | str | None = None,
        sink: OutputSink | None = None,
    ):
        """Initialize an empty context.

        Args:
            config: Launch settings (defaults to BridgeConfig.load())
            model_dir: Directory of the current model/project, used as working dir hint
            sink: Destination for companion stdout/stderr (defaults to the console)
        """
        self.config = config if config is not None else BridgeConfig.load()
        self.model_dir = model_dir
        self.sink = sink or ConsoleSink()
        self._session: Session | None = None
        self._lock = threading.RLock()

    @property
    def session(self) -> Session:
        """The live Session.

        Raises:
            NotStartedError: If setup has not been called
        """
        session = self._session
        if session is None or session.closed:
            raise NotStartedError()
        return session

    @property
    def started(self) -> bool:
        return self._session is not None and not self._session.closed

    def open(self, *python_command: str) -> Session:
        """Start a companion process and make it the current Session.

        Args:
            python_command: Command line for the interpreter, e.g. ("python3",).
                Falls back to the configured command when empty.

        Raises:
            StartupError: If the companion cannot be started; the previous
                Session has already been closed in that case
        """
        with self._lock:
            self.close()
            manager = CompanionProcessManager(self.config)
            session = manager.start(self.model_dir, python_command or None, sink=self.sink)
            self._session = session
            return session

    setup = open

    def replace(self, session: Session) -> None:
        """Install an already connected Session, closing the current one first."""
        with self._lock:
            self.close()
            self._session = session

    def close(self) -> None:
        """Tear down the current Session, if any."""
        with self._lock:
            session, self._session = self._session, None
            if session is None:
                return
            if not session.is_alive():
                logger.warning("Closing a session whose companion process already exited")
            session.terminate()

    def run(self, *lines: str) -> None:
        """Execute one or more lines as a statement."""
        self.session.execute(join_lines(lines))

    def runresult(self, *lines: str) -> Any:
        """Evaluate one or more lines as an expression and return the value."""
        return self.session.evaluate(join_lines(lines))

    def set(self, name: str, value: Any) -> None:
        """Assign a host value to a companion-side variable."""
        self.session.assign(name, value)

    def __enter__(self) -> "BridgeContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


_default_context: BridgeContext | None = None
_default_lock = threading.Lock()


def default_context() -> BridgeContext:
    """Return the process-wide context, creating it on first use."""
    global _default_context
    with _default_lock:
        if _default_context is None:
            _default_context = BridgeContext()
            atexit.register(_default_context.close)
        return _default_context


def setup(*python_command: str) -> None:
    default_context().open(*python_command)


def run(*lines: str) -> None:
    default_context().run(*lines)


def runresult(*lines: str) -> Any:
    return default_context().runresult(*lines)


def set_variable(name: str, value: Any) -> None:
    default_context().set(name, value)


def close() -> None:
    """Shut down the default context's companion process."""
    if _default_context is not None:
        _default_context.close()
