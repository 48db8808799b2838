"""Plugin host configuration models and utilities.

This module provides Pydantic models for validating and loading plugin host
configuration from YAML files, with support for environment variable expansion.

Models:
    - PluginConfig: One artifact to load at startup
    - PluginSettings: Global plugin host settings
    - PluginHostSettings: Root configuration model

Functions:
    - expand_env_vars: Expand ${VAR} patterns in strings
    - expand_env_vars_in_dict: Recursively expand env vars in nested dicts
    - load_settings: Load and validate settings from a YAML file
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

# Default deadline for timed calls, in seconds
DEFAULT_CALL_TIMEOUT = 0.1


class PluginConfig(BaseModel):
    """Configuration for a single plugin artifact.

    Attributes:
        path: Filesystem path of the artifact. Relative paths are resolved
            against the settings file's directory by ``load_settings``.
        enabled: Whether the manager loads the artifact on ``run()``.
    """

    path: str
    enabled: bool = True


class PluginSettings(BaseModel):
    """Global plugin host settings.

    Attributes:
        call_timeout: Deadline for ``PluginManager.call_with_timeout``
            (seconds). The lifecycle core itself never enforces it.
        allow_multiple_versions: Whether several versions of the same
            plugin name may be registered at once.
        dynamic_loading: False selects the stub loader that fails every
            open with NOT_IMPLEMENTED.
        max_workers: Size of the thread pool used for timed calls.
    """

    call_timeout: float = Field(default=DEFAULT_CALL_TIMEOUT, gt=0)
    allow_multiple_versions: bool = False
    dynamic_loading: bool = True
    max_workers: int = Field(default=4, ge=1)


class PluginHostSettings(BaseModel):
    """Root configuration model for the plugin host.

    Attributes:
        version: Configuration schema version.
        plugin_settings: Global plugin host settings.
        plugins: Artifacts to load when the manager runs.
    """

    version: str = "1"
    plugin_settings: PluginSettings = Field(default_factory=PluginSettings)
    plugins: list[PluginConfig] = Field(default_factory=list)


# Environment variable expansion pattern: ${VAR_NAME}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def expand_env_vars(value: str) -> str:
    """Expand ${VAR} patterns with environment variables.

    Args:
        value: String potentially containing ${VAR} patterns.

    Returns:
        String with all ${VAR} patterns replaced with environment variable values.

    Raises:
        ValueError: If a referenced environment variable is not set.

    Example:
        >>> os.environ["PLUGIN_DIR"] = "/opt/plugins"
        >>> expand_env_vars("${PLUGIN_DIR}/echo.py")
        "/opt/plugins/echo.py"
    """

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            raise ValueError(f"Environment variable '{var_name}' not set")
        return env_value

    return _ENV_VAR_PATTERN.sub(replacer, value)


def expand_env_vars_in_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand environment variables in a nested dictionary.

    Args:
        data: Dictionary potentially containing ${VAR} patterns in string values.

    Returns:
        New dictionary with all ${VAR} patterns expanded.

    Raises:
        ValueError: If a referenced environment variable is not set.
    """
    result: dict[str, Any] = {}

    for key, value in data.items():
        if isinstance(value, str):
            result[key] = expand_env_vars(value)
        elif isinstance(value, dict):
            result[key] = expand_env_vars_in_dict(value)
        elif isinstance(value, list):
            result[key] = [_expand_item(item) for item in value]
        else:
            result[key] = value

    return result


def _expand_item(item: Any) -> Any:
    if isinstance(item, str):
        return expand_env_vars(item)
    if isinstance(item, dict):
        return expand_env_vars_in_dict(item)
    return item


def load_settings(path: str | Path) -> PluginHostSettings:
    """Load and validate settings from a YAML file.

    Performs environment variable expansion on all string values before
    validation, then resolves relative plugin paths against the directory
    containing the settings file.

    Args:
        path: Path to the settings.yml file.

    Returns:
        Validated PluginHostSettings instance.

    Raises:
        FileNotFoundError: If the settings file does not exist.
        yaml.YAMLError: If the file contains invalid YAML.
        pydantic.ValidationError: If the configuration is invalid.
        ValueError: If environment variable expansion fails.
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with path.open() as f:
        data = yaml.safe_load(f)

    # Handle empty file
    if data is None:
        data = {}

    data = expand_env_vars_in_dict(data)
    settings = PluginHostSettings.model_validate(data)

    base_dir = path.parent
    for plugin in settings.plugins:
        plugin_path = Path(plugin.path).expanduser()
        if not plugin_path.is_absolute():
            plugin.path = str(base_dir / plugin_path)

    return settings
