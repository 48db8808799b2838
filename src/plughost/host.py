"""Process-wide plugin host façade.

Wraps one default PluginManager for code that wants package-level helpers
instead of passing a manager around. The core types never depend on this
module; tests that need isolation construct their own PluginManager.
"""

import threading
from pathlib import Path
from typing import Any

import structlog

from plughost.plugins.base import PluginFunc
from plughost.plugins.config import PluginHostSettings
from plughost.plugins.errors import PluginError, PluginErrorCode
from plughost.plugins.lifecycle import Plugin
from plughost.plugins.manager import PluginManager

logger = structlog.get_logger()

# Global default manager; use _reset_for_testing() in tests to reset state
_manager: PluginManager | None = None
_manager_lock = threading.Lock()


def start_manager(
    settings: PluginHostSettings | None = None,
    settings_path: str | Path | None = None,
) -> PluginManager:
    """Create and run the default manager.

    Does nothing if the default manager is already running.

    Args:
        settings: Pre-loaded settings (optional).
        settings_path: Path to a settings.yml file (optional).

    Returns:
        The running default manager.

    Raises:
        PluginError: CONFIG_INVALID if settings_path cannot be loaded.
    """
    global _manager

    with _manager_lock:
        if _manager is not None and _manager.is_running():
            return _manager

        manager = PluginManager(settings_path=settings_path, settings=settings)
        manager.run()
        _manager = manager
        return manager


def stop_manager() -> None:
    """Stop the default manager and forget it."""
    global _manager

    with _manager_lock:
        manager, _manager = _manager, None

    if manager is not None:
        manager.stop()


def get_manager() -> PluginManager | None:
    """Get the default manager instance.

    Returns:
        The PluginManager if started, None otherwise.
    """
    return _manager


def _require_manager() -> PluginManager:
    if _manager is None:
        raise PluginError(
            code=PluginErrorCode.PLUGIN_NOT_FOUND,
            message="Plugin manager not started",
        )
    return _manager


def get_plugin(name: str) -> Plugin | None:
    return _require_manager().get_plugin(name)


def get_plugin_with_version(name: str, version: int) -> Plugin | None:
    return _require_manager().get_plugin_with_version(name, version)


def get_func(module: str, function: str) -> PluginFunc:
    """Resolve a plugin function through the default manager.

    Raises:
        PluginError: PLUGIN_NOT_FOUND if the manager is not started or has
            no such plugin, or any error from ``Plugin.get_func``.
    """
    return _require_manager().get_func(module, function)


def call(module: str, function: str, *args: Any) -> list[Any]:
    """Call a plugin function through the default manager.

    Returns:
        The function's result list, or ``[error]`` if it cannot be resolved.
    """
    try:
        func = get_func(module, function)
    except PluginError as e:
        return [e]
    return func(*args)


def _reset_for_testing() -> None:
    """Reset global state for testing purposes.

    Warning:
        This function is for testing only. Do not use in production code.
    """
    stop_manager()
