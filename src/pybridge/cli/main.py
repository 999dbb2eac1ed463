"""pybridge CLI entry point."""

import json
import logging
import shlex
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import typer

from .. import __version__
from ..config import BridgeConfig
from ..errors import BridgeError, ConfigError, ProtocolError, RemoteError
from ..output import ConsoleSink
from ..primitives import BridgeContext
from .display import console, dim, error, info, result, section, warning

app = typer.Typer(
    name="pybridge",
    help="Run code in a companion Python interpreter over a local socket",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Inspect pybridge configuration")
app.add_typer(config_app, name="config")

PYTHON_HELP = "Interpreter command line, e.g. 'python3' or '/opt/venv/bin/python -X dev'"
WORKDIR_HELP = "Model directory the companion runs in (defaults to the home directory)"


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run code in a companion Python interpreter."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_config() -> BridgeConfig:
    try:
        return BridgeConfig.load()
    except ConfigError as e:
        error(str(e))
        raise typer.Exit(1)


@contextmanager
def _bridge_errors():
    """Render bridge failures and exit non-zero."""
    try:
        yield
    except RemoteError as e:
        error(e.message)
        if e.remote_traceback:
            dim(e.remote_traceback.rstrip())
        raise typer.Exit(1)
    except BridgeError as e:
        error(str(e))
        raise typer.Exit(1)


@contextmanager
def _open_context(python: Optional[str], working_dir: Optional[Path]):
    context = BridgeContext(config=_load_config(), model_dir=working_dir, sink=ConsoleSink(console))
    with _bridge_errors():
        context.open(*(shlex.split(python) if python else ()))
    try:
        yield context
    finally:
        context.close()


@app.command()
def run(
    code: List[str] = typer.Argument(..., help="Source lines, joined with newlines"),
    python: Optional[str] = typer.Option(None, "--python", "-p", help=PYTHON_HELP),
    working_dir: Optional[Path] = typer.Option(None, "--working-dir", "-d", help=WORKDIR_HELP),
):
    """Execute statements in a fresh companion interpreter."""
    with _open_context(python, working_dir) as context, _bridge_errors():
        context.run(*code)


@app.command("eval")
def eval_command(
    code: List[str] = typer.Argument(..., help="Expression lines, joined with newlines"),
    python: Optional[str] = typer.Option(None, "--python", "-p", help=PYTHON_HELP),
    working_dir: Optional[Path] = typer.Option(None, "--working-dir", "-d", help=WORKDIR_HELP),
):
    """Evaluate an expression and print the converted result."""
    with _open_context(python, working_dir) as context, _bridge_errors():
        result(context.runresult(*code))


def _repl_line(context: BridgeContext, line: str) -> bool:
    """Handle one REPL line. Returns False when the REPL should stop."""
    stripped = line.strip()
    if not stripped:
        return True
    if stripped in (":quit", ":q", ":exit"):
        return False
    if stripped.startswith(":set "):
        parts = stripped.split(maxsplit=2)
        if len(parts) != 3:
            warning("usage: :set NAME JSON")
            return True
        try:
            value = json.loads(parts[2])
        except ValueError as e:
            warning(f"Invalid JSON value: {e}")
            return True
        context.set(parts[1], value)
    elif stripped.startswith("="):
        result(context.runresult(stripped[1:].strip()))
    else:
        context.run(line)
    return True


@app.command()
def repl(
    python: Optional[str] = typer.Option(None, "--python", "-p", help=PYTHON_HELP),
    working_dir: Optional[Path] = typer.Option(None, "--working-dir", "-d", help=WORKDIR_HELP),
):
    """Interactive session with a companion interpreter.

    Lines starting with '=' are evaluated and printed, ':set NAME JSON'
    assigns a value, ':quit' exits. Anything else is executed.
    """
    with _open_context(python, working_dir) as context:
        info("[dim]'=' evaluates, ':set NAME JSON' assigns, ':quit' exits[/dim]")
        while True:
            try:
                line = console.input(">>> ")
            except EOFError:
                break
            try:
                if not _repl_line(context, line):
                    break
            except RemoteError as e:
                error(e.message)
                if e.remote_traceback:
                    dim(e.remote_traceback.rstrip())
            except ProtocolError as e:
                error(str(e))
                raise typer.Exit(1)
            except TypeError as e:
                # Value has no interchange representation
                error(str(e))


@config_app.command()
def show():
    """Display the effective configuration."""
    config = _load_config()
    section(f"Configuration ({BridgeConfig.get_config_path()})")
    console.print(config.to_yaml_string(), markup=False, highlight=False)
    info(f"Companion script: {config.script_path}")


@app.command()
def version():
    """Show pybridge version."""
    info(f"pybridge version: {__version__}")


def main():
    """Main CLI entry point."""
    try:
        app()
    except KeyboardInterrupt:
        warning("\nInterrupted by user")
        raise typer.Exit(1)


if __name__ == "__main__":
    main()
