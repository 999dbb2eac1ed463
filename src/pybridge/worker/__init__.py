"""Companion process communication layer.

The wire codec, value translation, process startup and session live here.
``companion.py`` is the standalone script run inside the companion
interpreter and is never imported by the host side.
"""

from .process_manager import CompanionProcessManager
from .session import Session

__all__ = [
    "CompanionProcessManager",
    "Session",
]
