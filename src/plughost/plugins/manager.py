"""Plugin registry and manager.

This module provides the PluginManager, the registry that maps plugin
names and (name, version) pairs to live Plugin instances. Plugins consult
it for duplicate detection while loading and notify it once loaded;
callers use it to route calls by plugin name.

Classes:
    - PluginManager: Registry, startup loader and call router
"""

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from plughost.plugins.adapters import create_loader
from plughost.plugins.base import ArtifactLoader, PluginFunc, PluginStatus
from plughost.plugins.config import PluginHostSettings, load_settings
from plughost.plugins.errors import PluginError, PluginErrorCode
from plughost.plugins.lifecycle import Plugin

logger = structlog.get_logger()


class PluginManager:
    """Manages all plugins and routes calls to them.

    The manager is an ordinary object: tests and embedders construct as
    many as they need. ``plughost.host`` wraps one process-wide instance
    for convenience.

    Design Note:
        The constructor accepts either a settings_path or a pre-loaded
        PluginHostSettings object so tests can inject settings without
        touching the filesystem.

    Version coexistence:
        With ``allow_multiple_versions`` disabled, a newly loaded version
        supersedes the previous instance of the same name; the superseded
        instance is dropped from the name and version maps but stays
        tracked so that stop() still unloads it. With it enabled, every
        version stays registered and name lookups return the highest
        loaded version.

    Example:
        manager = PluginManager(settings=settings)
        manager.run()

        result = manager.call("echo", "Echo", "hi")  # ["hi", None]

        manager.stop()
    """

    def __init__(
        self,
        settings_path: str | Path | None = None,
        settings: PluginHostSettings | None = None,
        loader: ArtifactLoader | None = None,
    ) -> None:
        """Initialize the plugin manager.

        Args:
            settings_path: Path to the settings.yml file (optional).
            settings: Pre-loaded settings (optional, for testing).
            loader: Artifact loader override (optional, for testing).
                Defaults to the loader selected by the settings.
        """
        self._settings_path = settings_path
        self._settings = settings
        self._loader = loader
        self._lock = threading.Lock()
        self._by_name: dict[str, Plugin] = {}
        self._by_version: dict[tuple[str, int], Plugin] = {}
        self._plugins: list[Plugin] = []
        self._executor: ThreadPoolExecutor | None = None
        self._running = False

    @property
    def settings(self) -> PluginHostSettings:
        """Return the settings, loading them on first access.

        Raises:
            PluginError: CONFIG_INVALID if the settings file cannot be read
                or fails validation.
        """
        if self._settings is None:
            if self._settings_path:
                self._settings = self._read_settings(self._settings_path)
            else:
                self._settings = PluginHostSettings()
        return self._settings

    @staticmethod
    def _read_settings(path: str | Path) -> PluginHostSettings:
        try:
            return load_settings(path)
        except (OSError, yaml.YAMLError, ValidationError, ValueError) as e:
            raise PluginError(
                code=PluginErrorCode.CONFIG_INVALID,
                message=f"Cannot load settings from {path}: {e}",
                cause=e,
            ) from e

    @property
    def loader(self) -> ArtifactLoader:
        if self._loader is None:
            self._loader = create_loader(self.settings.plugin_settings.dynamic_loading)
        return self._loader

    def is_running(self) -> bool:
        return self._running

    def run(self) -> None:
        """Start the manager and load every enabled plugin from settings.

        Individual load failures are logged and do not stop the others.
        Calling run() on a running manager does nothing.
        """
        if self._running:
            logger.warning("plugin_manager_already_running")
            return

        for config in self.settings.plugins:
            if not config.enabled:
                continue
            try:
                self.load_plugin(config.path)
            except PluginError as e:
                logger.error(
                    "plugin_load_failed_on_start",
                    path=config.path,
                    error=str(e),
                )

        self._running = True
        logger.info("plugin_manager_started", plugins=len(self))

    def stop(self) -> None:
        """Unload every plugin and release the call pool.

        Unload errors are logged, not raised.
        """
        for plugin in self.plugins():
            try:
                plugin.unload()
            except PluginError as e:
                logger.error(
                    "plugin_unload_error_on_stop",
                    plugin=plugin.name,
                    path=plugin.path,
                    error=str(e),
                )

        with self._lock:
            self._by_name.clear()
            self._by_version.clear()
            self._plugins.clear()
            executor, self._executor = self._executor, None

        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

        self._running = False
        logger.info("plugin_manager_stopped")

    def get_plugin(self, name: str) -> Plugin | None:
        """Look up the registered plugin for a name.

        Args:
            name: Self-declared plugin name.

        Returns:
            The Plugin, or None if no plugin of that name was loaded.
        """
        with self._lock:
            return self._by_name.get(name)

    def get_plugin_with_version(self, name: str, version: int) -> Plugin | None:
        """Look up a loaded plugin by exact name and version.

        Only plugins currently LOADED count, so a plugin reloading itself
        is not reported as its own duplicate.

        Args:
            name: Self-declared plugin name.
            version: Self-declared version.

        Returns:
            The loaded Plugin, or None.
        """
        with self._lock:
            plugin = self._by_version.get((name, version))
        if plugin is not None and plugin.status is PluginStatus.LOADED:
            return plugin
        return None

    def try_register(
        self,
        plugin: Plugin,
        name: str,
        version: int,
        commit: Callable[[], None],
    ) -> Plugin | None:
        """Claim (name, version) for a loading plugin in one atomic step.

        The duplicate check, ``commit`` and the registry update all run
        under the registry lock, so of several records racing to register
        the same identity exactly one wins.

        Args:
            plugin: The plugin whose Load export is registering.
            name: Self-declared plugin name.
            version: Self-declared version.
            commit: Adopts the identity on ``plugin`` (sets it LOADED).
                Runs only when the identity is free.

        Returns:
            The already loaded Plugin holding the identity, or None if
            ``plugin`` was registered.
        """
        allow_multiple = self.settings.plugin_settings.allow_multiple_versions

        with self._lock:
            existing = self._by_version.get((name, version))
            if (
                existing is not None
                and existing is not plugin
                and existing.status is PluginStatus.LOADED
            ):
                return existing
            commit()
            self._record_loaded(plugin, allow_multiple)
        return None

    def on_loaded(self, plugin: Plugin) -> None:
        """Register a plugin that just finished loading.

        Args:
            plugin: The newly loaded plugin.
        """
        allow_multiple = self.settings.plugin_settings.allow_multiple_versions

        with self._lock:
            self._record_loaded(plugin, allow_multiple)

    def _record_loaded(self, plugin: Plugin, allow_multiple: bool) -> None:
        """Update the name and version maps for a loaded plugin (lock held)."""
        self._forget_versions(plugin)
        # A reload may change the self-declared name
        renamed = [
            n for n, p in self._by_name.items() if p is plugin and n != plugin.name
        ]
        for stale_name in renamed:
            del self._by_name[stale_name]
        self._by_version[(plugin.name, plugin.version)] = plugin
        if plugin not in self._plugins:
            self._plugins.append(plugin)

        current = self._by_name.get(plugin.name)
        if current is not None and current is not plugin:
            if not allow_multiple:
                self._forget_versions(current)
                logger.warning(
                    "plugin_superseded",
                    plugin=plugin.name,
                    old_version=f"0x{current.version:x}",
                    new_version=f"0x{plugin.version:x}",
                )
            elif (
                current.status is PluginStatus.LOADED
                and current.version > plugin.version
            ):
                return
        self._by_name[plugin.name] = plugin

    def _forget_versions(self, plugin: Plugin) -> None:
        """Drop every version key pointing at ``plugin`` (lock held)."""
        stale = [key for key, value in self._by_version.items() if value is plugin]
        for key in stale:
            del self._by_version[key]

    def _forget(self, plugin: Plugin) -> None:
        with self._lock:
            self._forget_versions(plugin)
            if plugin in self._plugins:
                self._plugins.remove(plugin)
            if self._by_name.get(plugin.name) is plugin:
                del self._by_name[plugin.name]
                # Fall back to another registered version of the same name
                others = [
                    p
                    for p in self._by_version.values()
                    if p.name == plugin.name and p is not plugin
                ]
                if others:
                    self._by_name[plugin.name] = max(others, key=lambda p: p.version)

    def plugins(self) -> list[Plugin]:
        """Return a snapshot of every plugin this manager tracks."""
        with self._lock:
            return list(self._plugins)

    def load_plugin(self, path: str | Path) -> Plugin:
        """Create a Plugin for an artifact and load it.

        Args:
            path: Filesystem path of the artifact.

        Returns:
            The loaded Plugin.

        Raises:
            PluginError: If loading fails.
        """
        plugin = Plugin(path, self, loader=self.loader)
        plugin.load()
        return plugin

    def unload_plugin(self, name: str) -> None:
        """Unload a plugin by name and drop it from the registry.

        Args:
            name: Self-declared plugin name.

        Raises:
            PluginError: PLUGIN_NOT_FOUND if no such plugin, or the error
                reported by the plugin's Unload export (the plugin is
                removed from the registry either way).
        """
        plugin = self._require(name)
        try:
            plugin.unload()
        finally:
            self._forget(plugin)

    def reload_plugin(self, name: str) -> Plugin:
        """Reload a plugin by name.

        Args:
            name: Self-declared plugin name.

        Returns:
            The reloaded Plugin (its version may have changed).

        Raises:
            PluginError: PLUGIN_NOT_FOUND or the reload error.
        """
        plugin = self._require(name)
        plugin.reload()
        return plugin

    def _require(self, name: str) -> Plugin:
        plugin = self.get_plugin(name)
        if plugin is None:
            raise PluginError(
                code=PluginErrorCode.PLUGIN_NOT_FOUND,
                message=f"Plugin not found: {name}",
                plugin_name=name,
            )
        return plugin

    def get_func(self, module: str, function: str) -> PluginFunc:
        """Resolve a function of a plugin by plugin name.

        Args:
            module: Plugin name.
            function: Exported function name.

        Returns:
            The plugin function's invocation closure.

        Raises:
            PluginError: PLUGIN_NOT_FOUND, PLUGIN_NOT_LOADED,
                SYMBOL_NOT_FOUND or BIND_FAILED.
        """
        return self._require(module).get_func(function)

    def call(self, module: str, function: str, *args: Any) -> list[Any]:
        """Call a plugin function by plugin name.

        Returns:
            The function's result list, or ``[error]`` if it cannot be
            resolved.
        """
        try:
            func = self.get_func(module, function)
        except PluginError as e:
            return [e]
        return func(*args)

    def call_with_timeout(
        self,
        module: str,
        function: str,
        *args: Any,
        timeout: float | None = None,
    ) -> list[Any]:
        """Race a call against a deadline.

        The call runs on the manager's thread pool. On expiry the caller
        gets ``[PluginError(TIMEOUT)]`` while the plugin call keeps running
        in the background; plugin code cannot be interrupted.

        Args:
            module: Plugin name.
            function: Exported function name.
            *args: Positional arguments for the function.
            timeout: Deadline in seconds (defaults to
                ``plugin_settings.call_timeout``).

        Returns:
            The function's result list, or ``[error]``.
        """
        if timeout is None:
            timeout = self.settings.plugin_settings.call_timeout

        future = self._ensure_executor().submit(self.call, module, function, *args)
        try:
            return future.result(timeout=timeout)
        except TimeoutError:
            logger.warning(
                "plugin_call_timeout",
                plugin=module,
                function=function,
                timeout=timeout,
            )
            return [
                PluginError(
                    code=PluginErrorCode.TIMEOUT,
                    message=f"{function} did not return within {timeout}s",
                    plugin_name=module,
                )
            ]

    def _ensure_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.settings.plugin_settings.max_workers,
                    thread_name_prefix="plughost-call",
                )
            return self._executor

    def __contains__(self, name: str) -> bool:
        """Check if a plugin name is registered."""
        return self.get_plugin(name) is not None

    def __len__(self) -> int:
        """Return the number of registered plugin names."""
        with self._lock:
            return len(self._by_name)
