"""pybridge - run code in a companion Python interpreter over a local socket."""

__version__ = "0.1.0"

from .config import BridgeConfig
from .errors import (
    BridgeError,
    ConfigError,
    NotStartedError,
    ProtocolError,
    RemoteError,
    StartupError,
)
from .primitives import BridgeContext, default_context

__all__ = [
    "BridgeConfig",
    "BridgeContext",
    "BridgeError",
    "ConfigError",
    "NotStartedError",
    "ProtocolError",
    "RemoteError",
    "StartupError",
    "default_context",
    "__version__",
]
