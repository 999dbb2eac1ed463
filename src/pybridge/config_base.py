"""Base configuration model with YAML loading capabilities."""

from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .errors import ConfigError

T = TypeVar("T", bound="ConfigModel")


class ConfigModel(BaseModel):
    """Base model with YAML loading/saving capabilities."""

    @classmethod
    def from_yaml(cls: type[T], path: Path) -> T:
        """
        Load and validate configuration from YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Validated configuration model instance

        Raises:
            ConfigError: On file not found, invalid YAML, or validation errors
        """
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(cls._format_yaml_error(e, path)) from e
        except OSError as e:
            raise ConfigError(f"Error reading configuration file: {path}\n{e}") from e

        return cls.from_dict(data or {}, source=path.name)

    @classmethod
    def from_dict(cls: type[T], data: dict[str, Any], source: str = "<dict>") -> T:
        """Validate a plain mapping, converting pydantic errors to ConfigError."""
        if not isinstance(data, dict):
            raise ConfigError(f"Invalid {cls.__name__} configuration in {source}: expected a mapping")
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigError(cls._format_validation_error(e, source)) from e

    @classmethod
    def from_yaml_optional(cls: type[T], path: Path | None) -> T | None:
        """
        Load configuration from YAML if path provided and exists.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Validated configuration model instance or None
        """
        if path and path.exists():
            return cls.from_yaml(path)
        return None

    def to_yaml(self, path: Path):
        """
        Write configuration to YAML file.

        Args:
            path: Path to write YAML file
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            f.write(self.to_yaml_string())

    def to_yaml_string(self) -> str:
        """
        Convert configuration to YAML string.

        Returns:
            YAML formatted string of the configuration
        """
        return yaml.safe_dump(
            self.model_dump(mode="json", by_alias=True, exclude_unset=False),
            default_flow_style=False,
            sort_keys=False,
        )

    @classmethod
    def _format_validation_error(cls, error: ValidationError, source: str) -> str:
        lines = [f"Invalid {cls.__name__} configuration: {source}"]
        for err in error.errors():
            field_path = " → ".join(str(loc) for loc in err["loc"])
            if "missing" in err["type"]:
                lines.append(f"  Missing required field: {field_path}")
            else:
                lines.append(f"  {field_path}: {err['msg']}")
        return "\n".join(lines)

    @classmethod
    def _format_yaml_error(cls, error: yaml.YAMLError, path: Path) -> str:
        message = f"Invalid YAML syntax in: {path.name}"
        # Extract line number from error when available
        if hasattr(error, "problem_mark") and error.problem_mark is not None:
            mark = error.problem_mark
            message += f"\n  Line {mark.line + 1}, Column {mark.column + 1}"
        return f"{message}\n{error}"
