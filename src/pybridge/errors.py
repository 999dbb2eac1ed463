"""Error types for pybridge."""


class BridgeError(Exception):
    """Base exception for pybridge errors."""
    pass


class ConfigError(BridgeError):
    """Configuration error."""
    pass


class StartupError(BridgeError):
    """The companion process could not be launched or exited before connecting."""

    def __init__(self, message: str, stdout: str = "", stderr: str = ""):
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(message)


class NotStartedError(BridgeError):
    """A primitive was called before any companion process was set up."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "Python process has not been started. "
            "Please run setup before any other python bridge primitive."
        )


class ProtocolError(BridgeError):
    """The channel to the companion broke or carried a malformed payload.

    The session that raised it is no longer usable and must be replaced.
    """
    pass


class RemoteTraceback(Exception):
    """Carries the companion's formatted traceback as an exception cause."""

    def __init__(self, tb: str):
        self.tb = tb
        super().__init__(tb)

    def __str__(self):
        return self.tb


class RemoteError(BridgeError):
    """The companion reported an error for a statement, expression or assignment."""

    def __init__(self, message: str, remote_traceback: str = ""):
        self.message = message
        self.remote_traceback = remote_traceback
        super().__init__(message)
        self.__cause__ = RemoteTraceback(remote_traceback)
