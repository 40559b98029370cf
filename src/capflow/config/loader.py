# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""YAML loader with environment variable resolution.

This module handles loading workflow definitions and runtime configuration
files, resolving ``${VAR}`` / ``${VAR:-default}`` references, and parsing
the result into typed Pydantic models.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from capflow.config.schema import RuntimeConfig, WorkflowDefinition
from capflow.exceptions import ConfigurationError

ModelT = TypeVar("ModelT", bound=BaseModel)

# Pattern to match ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


def resolve_env_vars(value: str, max_depth: int = 10) -> str:
    """Resolve ${ENV:-default} patterns in strings.

    Environment variable values may themselves contain references, which
    are resolved recursively up to ``max_depth`` levels.

    Args:
        value: The string potentially containing env var references.
        max_depth: Maximum recursion depth to prevent infinite loops.

    Returns:
        The string with all environment variables resolved.

    Raises:
        ConfigurationError: If a required environment variable is missing
            (no default provided) or recursion limit is exceeded.
    """
    if max_depth <= 0:
        raise ConfigurationError(
            f"Maximum recursion depth exceeded while resolving environment variables in: {value}",
            suggestion="Check for circular references in your environment variables.",
        )

    def replace_env_var(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2)

        env_value = os.environ.get(var_name)
        if env_value is not None:
            return env_value
        if default_value is not None:
            return default_value
        raise ConfigurationError(
            f"Required environment variable '{var_name}' is not set",
            suggestion=f"Set '{var_name}' or provide a default with ${{{var_name}:-value}}",
        )

    result = ENV_VAR_PATTERN.sub(replace_env_var, value)

    if ENV_VAR_PATTERN.search(result):
        return resolve_env_vars(result, max_depth - 1)

    return result


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Resolve environment variables in every string of a nested structure."""
    if isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    if isinstance(data, str):
        return resolve_env_vars(data)
    return data


def _format_pydantic_errors(error: PydanticValidationError) -> tuple[str, str | None]:
    """Render pydantic errors as bullet lines plus the first field path."""
    lines: list[str] = []
    first_path: str | None = None
    for err in error.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()))
        if first_path is None and loc:
            first_path = loc
        lines.append(f"  - {loc}: {err.get('msg', 'Unknown error')}")
    return "\n".join(lines), first_path


class ConfigLoader:
    """Loads YAML files into Pydantic models.

    This class handles:
    - YAML parsing with line number tracking for error messages
    - Environment variable resolution
    - Pydantic schema validation
    """

    def __init__(self) -> None:
        """Initialize the loader with a ruamel.yaml parser."""
        self._yaml = YAML(typ="safe")

    def read(self, path: str | Path) -> tuple[str, Path]:
        """Read a YAML file, reporting missing or unreadable paths."""
        path = Path(path)

        if not path.exists():
            raise ConfigurationError(
                f"File not found: {path}",
                suggestion="Check that the file path is correct and the file exists.",
            )

        if not path.is_file():
            raise ConfigurationError(
                f"Path is not a file: {path}",
                suggestion="Provide a path to a YAML file, not a directory.",
            )

        try:
            return path.read_text(encoding="utf-8"), path
        except OSError as e:
            raise ConfigurationError(
                f"Failed to read '{path}': {e}",
                suggestion="Check file permissions and ensure the file is readable.",
            ) from e

    def parse(self, content: str, source_path: Path | None = None) -> dict[str, Any]:
        """Parse YAML content into an env-resolved mapping.

        Args:
            content: The YAML content as a string.
            source_path: Optional path for error messages.

        Returns:
            The parsed mapping with environment variables resolved.

        Raises:
            ConfigurationError: If the YAML is invalid, empty, or not a mapping.
        """
        source = str(source_path) if source_path else "<string>"

        try:
            data = self._yaml.load(content)
        except YAMLError as e:
            line_number = None
            line_info = ""
            mark = getattr(e, "problem_mark", None)
            if mark is not None:
                line_number = mark.line + 1
                line_info = f" at line {line_number}, column {mark.column + 1}"
            raise ConfigurationError(
                f"Invalid YAML syntax in '{source}'{line_info}: {e}",
                suggestion="Check the YAML syntax. Common issues include incorrect "
                "indentation, missing colons, or unquoted special characters.",
                file_path=str(source_path) if source_path else None,
                line_number=line_number,
            ) from e

        if data is None:
            raise ConfigurationError(
                f"Empty configuration file: {source}",
                suggestion="Add content to the YAML file.",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Invalid configuration format in '{source}': "
                f"expected a mapping, got {type(data).__name__}",
                suggestion="The top level of the file must be a mapping of keys to values.",
            )

        return _resolve_env_vars_recursive(data)

    def validate(self, model: type[ModelT], data: dict[str, Any], source: str) -> ModelT:
        """Validate parsed data against a Pydantic model.

        Raises:
            ConfigurationError: If the data fails schema validation.
        """
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            details, field_path = _format_pydantic_errors(e)
            raise ConfigurationError(
                f"Configuration validation failed in '{source}':\n{details}",
                suggestion="Check the file against the schema. "
                "Ensure all required fields are present and have valid values.",
                field_path=field_path,
            ) from e

    def load_workflow(self, path: str | Path) -> WorkflowDefinition:
        """Load a workflow definition from a YAML file."""
        content, path = self.read(path)
        return self.load_workflow_string(content, source_path=path)

    def load_workflow_string(
        self, content: str, source_path: Path | None = None
    ) -> WorkflowDefinition:
        """Load a workflow definition from a YAML string."""
        data = self.parse(content, source_path)
        return self.validate(WorkflowDefinition, data, str(source_path or "<string>"))

    def load_runtime(self, path: str | Path) -> RuntimeConfig:
        """Load a runtime configuration (settings and capabilities) from a YAML file."""
        content, path = self.read(path)
        return self.load_runtime_string(content, source_path=path)

    def load_runtime_string(
        self, content: str, source_path: Path | None = None
    ) -> RuntimeConfig:
        """Load a runtime configuration from a YAML string."""
        data = self.parse(content, source_path)
        return self.validate(RuntimeConfig, data, str(source_path or "<string>"))


def load_workflow(path: str | Path) -> WorkflowDefinition:
    """Convenience function to load a workflow definition.

    Args:
        path: Path to the workflow YAML file.

    Returns:
        A parsed WorkflowDefinition. Structural validation (ids, references,
        cycles) happens at registration time.

    Raises:
        ConfigurationError: If loading or schema validation fails.
    """
    return ConfigLoader().load_workflow(path)


def load_workflow_string(content: str, source_path: Path | None = None) -> WorkflowDefinition:
    """Convenience function to load a workflow definition from a string."""
    return ConfigLoader().load_workflow_string(content, source_path)


def load_runtime_config(path: str | Path) -> RuntimeConfig:
    """Convenience function to load a runtime configuration file."""
    return ConfigLoader().load_runtime(path)


def load_runtime_config_string(content: str, source_path: Path | None = None) -> RuntimeConfig:
    """Convenience function to load a runtime configuration from a string."""
    return ConfigLoader().load_runtime_string(content, source_path)
