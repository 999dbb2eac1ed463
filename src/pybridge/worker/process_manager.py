"""Companion process startup.

Launches the companion interpreter with the bundled companion script, then
connects to it over a private loopback socket. The port is reserved by
binding a throwaway socket to port 0 and closing it again; another process
could in principle claim the port before the companion binds it, which is
accepted for loopback-only use.
"""

import logging
import os
import shlex
import socket
import subprocess
import sys
from pathlib import Path
from typing import Sequence

from ..config import BridgeConfig
from ..errors import StartupError
from ..output import OutputSink
from .session import Session, read_all_ready

logger = logging.getLogger(__name__)

LOCALHOST = "localhost"

# PATH given to GUI-launched apps on macOS; user-installed interpreters are not on it
NEUTERED_MACOS_PATH = "/usr/bin:/bin:/usr/sbin:/sbin"


def find_open_port() -> int:
    """Ask the OS for a free ephemeral port on the loopback interface."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.bind((LOCALHOST, 0))
        probe.listen(1)
        return probe.getsockname()[1]


def build_command(
    python_command: Sequence[str],
    script: Path | str,
    port: int,
    platform: str | None = None,
    path_env: str | None = None,
) -> list[str]:
    """Build the companion command line: ``<python...> <script> <port>``.

    On macOS an app launched from the GUI inherits a minimal PATH that misses
    Homebrew and similar interpreters. In that case the command is run through
    bash, which first re-derives PATH with ``path_helper``.
    """
    platform = sys.platform if platform is None else platform
    path_env = os.environ.get("PATH") if path_env is None else path_env

    if platform == "darwin" and path_env == NEUTERED_MACOS_PATH:
        quoted = " ".join(shlex.quote(arg) for arg in python_command)
        return [
            "/bin/bash",
            "-c",
            f"eval $(/usr/libexec/path_helper -s) ; {quoted} {shlex.quote(str(script))} {port}",
        ]
    return [*python_command, str(script), str(port)]


def resolve_working_dir(hint: Path | str | None) -> Path:
    """Use the model directory when it exists, else the user's home directory."""
    if hint:
        candidate = Path(hint).expanduser()
        if candidate.is_dir():
            return candidate
    return Path.home()


class CompanionProcessManager:
    """Starts companion processes and hands back connected sessions."""

    def __init__(self, config: BridgeConfig | None = None):
        self.config = config or BridgeConfig()

    def start(
        self,
        working_directory_hint: Path | str | None = None,
        python_command: Sequence[str] | None = None,
        sink: OutputSink | None = None,
    ) -> Session:
        """Launch the companion and connect to it.

        Args:
            working_directory_hint: Model/project directory to run in, if it exists
            python_command: Command that starts the interpreter (default from config)
            sink: Destination for forwarded companion output

        Returns:
            Connected Session

        Raises:
            StartupError: If the executable is missing or the process exits
                before accepting a connection
        """
        python_command = list(python_command or self.config.python_command)
        if not python_command:
            raise StartupError("No Python command given")

        port = find_open_port()
        cmd = build_command(python_command, self.config.script_path, port)
        cwd = resolve_working_dir(self.config.working_dir or working_directory_hint)
        logger.info(f"Starting companion: {cmd} (cwd={cwd}, port={port})")

        env = os.environ.copy()
        env["PYTHONUNBUFFERED"] = "1"
        try:
            process = subprocess.Popen(
                cmd,
                stdin=None,  # inherited
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE if self.config.capture_stderr else None,
                cwd=str(cwd),
                env=env,
                close_fds=True,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise StartupError(f"Couldn't find Python executable: {python_command[0]}") from e

        sock = self._connect(process, port)
        if sock is None:
            # Process died before it accepted a connection
            stdout_text = read_all_ready(process.stdout)
            stderr_text = read_all_ready(process.stderr)
            process.wait()
            logger.error(
                f"Companion exited with code {process.returncode} before connecting\n"
                f"stdout: {stdout_text}\nstderr: {stderr_text}"
            )
            if process.stdout:
                process.stdout.close()
            if process.stderr:
                process.stderr.close()
            raise StartupError(
                "Python process failed to start\n"
                f"Output:\n{stdout_text}\n\n"
                f"Error output:\n{stderr_text}",
                stdout=stdout_text,
                stderr=stderr_text,
            )

        logger.info(f"Connected to companion pid={process.pid} on port {port}")
        return Session(process, sock, sink=sink)

    @staticmethod
    def _connect(process: subprocess.Popen, port: int) -> socket.socket | None:
        # Tight loop: the companion binds within milliseconds of starting
        while process.poll() is None:
            try:
                return socket.create_connection((LOCALHOST, port))
            except OSError:
                continue
        return None
