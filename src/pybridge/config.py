"""pybridge configuration management.

Configuration is read from ~/.pybridge/config.yaml when that file exists
and then overridden by environment variables prefixed with PYBRIDGE_:

- PYBRIDGE_CONFIG -> alternate config file location
- PYBRIDGE_PYTHON -> python_command (split like a shell command line)
- PYBRIDGE_COMPANION_SCRIPT -> companion_script
- PYBRIDGE_WORKING_DIR -> working_dir
- PYBRIDGE_CAPTURE_STDERR -> capture_stderr ("true"/"false")
"""

import os
import shlex
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator

from .config_base import ConfigModel

DEFAULT_PYTHON_COMMAND = ["python3"]
BUNDLED_COMPANION_SCRIPT = Path(__file__).parent / "worker" / "companion.py"


class BridgeConfig(ConfigModel):
    """Settings used when launching the companion process."""

    python_command: list[str] = Field(default_factory=lambda: list(DEFAULT_PYTHON_COMMAND))
    """Command line that starts the companion interpreter, e.g. ["python3"]."""

    companion_script: Path | None = None
    """Companion script override (defaults to the bundled companion.py)."""

    working_dir: Path | None = None
    """Working directory for the companion (defaults to the model dir, then home)."""

    capture_stderr: bool = False
    """Pipe companion stderr and forward it instead of inheriting the terminal."""

    @field_validator("python_command")
    @classmethod
    def validate_python_command(cls, v: list[str]) -> list[str]:
        if not v or not v[0].strip():
            raise ValueError("python_command must name an executable")
        return v

    @field_validator("companion_script")
    @classmethod
    def validate_companion_script(cls, v: Path | None) -> Path | None:
        if v is not None and not v.exists():
            raise ValueError(f"companion script not found: {v}")
        return v

    @property
    def script_path(self) -> Path:
        """Companion script that will be launched."""
        return self.companion_script or BUNDLED_COMPANION_SCRIPT

    @staticmethod
    def get_config_path() -> Path:
        """Get the configuration file path.

        Returns:
            Path from PYBRIDGE_CONFIG, or ~/.pybridge/config.yaml
        """
        override = os.environ.get("PYBRIDGE_CONFIG")
        if override:
            return Path(override).expanduser()
        return Path.home() / ".pybridge" / "config.yaml"

    def with_env_overrides(self, environ: dict[str, str] | None = None) -> "BridgeConfig":
        """Return a copy with PYBRIDGE_* environment variables applied."""
        env = os.environ if environ is None else environ
        data: dict[str, Any] = self.model_dump()

        python_cmd = env.get("PYBRIDGE_PYTHON")
        if python_cmd:
            data["python_command"] = shlex.split(python_cmd)
        script = env.get("PYBRIDGE_COMPANION_SCRIPT")
        if script:
            data["companion_script"] = Path(script).expanduser()
        working_dir = env.get("PYBRIDGE_WORKING_DIR")
        if working_dir:
            data["working_dir"] = Path(working_dir).expanduser()
        capture = env.get("PYBRIDGE_CAPTURE_STDERR")
        if capture:
            data["capture_stderr"] = capture.lower() == "true"

        return type(self).from_dict(data, source="environment")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "BridgeConfig":
        """Build configuration from defaults plus environment variables."""
        return cls().with_env_overrides(environ)

    @classmethod
    def load(cls, path: Path | None = None) -> "BridgeConfig":
        """Load the config file (if any) and apply environment overrides.

        Raises:
            ConfigError: If the file or environment holds invalid settings
        """
        config = cls.from_yaml_optional(path or cls.get_config_path()) or cls()
        return config.with_env_overrides()

    def save(self, path: Path | None = None) -> Path:
        target = path or self.get_config_path()
        self.to_yaml(target)
        return target
