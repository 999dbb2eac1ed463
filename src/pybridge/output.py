"""Destinations for text the companion process writes to stdout/stderr."""

from typing import Protocol

from rich.console import Console


class OutputSink(Protocol):
    """Anything that can receive forwarded companion output."""

    def write(self, text: str) -> None:
        ...


class ConsoleSink:
    """Print forwarded output to a rich console.

    Markup and highlighting are disabled so remote text is shown verbatim.
    """

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def write(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)


class BufferSink:
    """Collect forwarded output in memory."""

    def __init__(self):
        self.chunks: list[str] = []

    def write(self, text: str) -> None:
        self.chunks.append(text)

    def getvalue(self) -> str:
        return "\n".join(self.chunks)

    def clear(self) -> None:
        self.chunks.clear()
