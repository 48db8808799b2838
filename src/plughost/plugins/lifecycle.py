"""Single-plugin lifecycle management.

This module provides the Plugin class, which owns one plugin's identity,
drives it through the PluginStatus state machine and caches the
reflective bindings of its exported functions.

Artifact contract:
    Every artifact exports two entry points:
        Load(register): must call ``register(name, version)`` once with its
            self-declared name and unsigned integer version. Raising (or
            returning an exception) reports a load error.
        Unload(): called on host-initiated unload. Raising (or returning an
            exception) reports an unload error.

Concurrency:
    load, unload, reload and get_func run under a per-plugin re-entrant
    lock. ``status`` is readable without the lock for cheap polling.
    Bound functions are immutable once cached and may be invoked
    concurrently; ``call`` only takes the lock inside ``get_func``.

Classes:
    - Plugin: One named, versioned plugin and its load generations
"""

import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from plughost.plugins.adapters import get_default_loader
from plughost.plugins.base import (
    LOAD_SYMBOL,
    UNLOAD_SYMBOL,
    ArtifactHandle,
    ArtifactLoader,
    CallOutcome,
    PluginFunc,
    PluginStatus,
)
from plughost.plugins.binder import BoundFunction, FunctionBinder
from plughost.plugins.errors import PluginError, PluginErrorCode

if TYPE_CHECKING:
    from plughost.plugins.manager import PluginManager

logger = structlog.get_logger()


def _export_error(result: Any) -> BaseException | None:
    """Return the error an entry point reported through its return value."""
    return result if isinstance(result, BaseException) else None


class Plugin:
    """Manages the lifecycle of a single plugin artifact.

    Attributes:
        path: Artifact location, fixed at construction.
        name: Self-declared name; empty until the first successful load.
        version: Self-declared version; 0 until the first successful load.

    Example:
        plugin = Plugin("/plugins/echo.py", manager)
        plugin.load()
        plugin.call("Echo", "hi")  # ["hi", None]
        plugin.unload()
        plugin.call("Echo", "hi")  # [PluginError(PLUGIN_NOT_LOADED)]
    """

    def __init__(
        self,
        path: str | Path,
        manager: "PluginManager",
        loader: ArtifactLoader | None = None,
        binder: FunctionBinder | None = None,
    ) -> None:
        """Initialize the plugin record.

        Args:
            path: Filesystem path of the artifact.
            manager: Registry consulted for duplicates and notified on load.
            loader: Artifact loader (defaults to the process-wide loader).
            binder: Function binder (defaults to a new FunctionBinder).
        """
        self._path = str(path)
        self._manager = manager
        self._loader = loader if loader is not None else get_default_loader()
        self._binder = binder if binder is not None else FunctionBinder()
        self._lock = threading.RLock()
        self._status = PluginStatus.NONE
        self._name = ""
        self._version = 0
        self._handle: ArtifactHandle | None = None
        self._cache: dict[str, BoundFunction] = {}
        self._refs = 0

    @property
    def path(self) -> str:
        return self._path

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> int:
        return self._version

    @property
    def status(self) -> PluginStatus:
        """Return the current status without taking the plugin lock."""
        return self._status

    @property
    def refs(self) -> int:
        """Return the advisory reference count."""
        return self._refs

    def ref(self) -> int:
        """Increment the advisory reference count.

        The count is bookkeeping for callers only; it never gates unload.
        """
        with self._lock:
            self._refs += 1
            return self._refs

    def unref(self) -> int:
        """Decrement the advisory reference count (never below zero)."""
        with self._lock:
            self._refs = max(0, self._refs - 1)
            return self._refs

    def cached_functions(self) -> list[str]:
        """Return the names bound in the current load generation."""
        with self._lock:
            return list(self._cache)

    def _set_status(self, status: PluginStatus) -> None:
        self._status = status

    def _log_context(self) -> dict[str, Any]:
        return {
            "plugin": self._name or None,
            "version": f"0x{self._version:x}",
            "path": self._path,
        }

    def load(self) -> None:
        """Load the artifact and register the plugin.

        Does nothing if the plugin is already loaded or mid-transition.

        Transitions: NONE/UNLOADED -> LOADING -> LOADED (or back to NONE)

        Note:
            Registration success is independent of the ``Load`` export's
            own outcome. If the export registers and then fails, the error
            is raised but the plugin stays LOADED.

        Raises:
            PluginError: OPEN_FAILED, SYMBOL_NOT_FOUND, DUPLICATE_LOAD,
                LOAD_FAILED or NOT_IMPLEMENTED.
        """
        with self._lock:
            if self._status not in (PluginStatus.NONE, PluginStatus.UNLOADED):
                return
            self._load()

    def _load(self) -> None:
        self._set_status(PluginStatus.LOADING)

        try:
            handle = self._loader.open(self._path)
            self._handle = handle
            entry = self._loader.lookup(handle, LOAD_SYMBOL)
        except PluginError as e:
            self._handle = None
            self._set_status(PluginStatus.NONE)
            logger.error("plugin_load_failed", error=str(e), **self._log_context())
            raise

        registered = False
        registration_error: PluginError | None = None

        def register(name: str, version: int) -> None:
            nonlocal registered, registration_error
            if registered or self._status is not PluginStatus.LOADING:
                raise PluginError(
                    code=PluginErrorCode.LOAD_FAILED,
                    message="register() called outside a pending load",
                    plugin_name=name,
                )
            registered = True

            def commit() -> None:
                self._name = name
                self._version = version
                self._set_status(PluginStatus.LOADED)

            existing = self._manager.try_register(self, name, version, commit)
            if existing is not None:
                self._set_status(PluginStatus.NONE)
                logger.error(
                    "plugin_duplicate_load",
                    plugin=name,
                    version=f"0x{version:x}",
                    path=self._path,
                    existing_path=existing.path,
                )
                registration_error = PluginError(
                    code=PluginErrorCode.DUPLICATE_LOAD,
                    message=f"Plugin already loaded: {name} 0x{version:x}",
                    plugin_name=name,
                )
                raise registration_error

            logger.info("plugin_loaded", **self._log_context())

        try:
            error = _export_error(entry(register))
        except Exception as e:
            error = e

        if self._status is PluginStatus.LOADING:
            self._set_status(PluginStatus.NONE)
            if error is None:
                error = PluginError(
                    code=PluginErrorCode.LOAD_FAILED,
                    message="Load returned without registering",
                    plugin_name=self._path,
                )

        if self._status is PluginStatus.NONE:
            self._handle = None
            # A swallowed duplicate still fails the load
            if error is None:
                error = registration_error

        if error is None:
            return

        logger.error("plugin_load_failed", error=str(error), **self._log_context())
        if isinstance(error, PluginError):
            raise error
        raise PluginError(
            code=PluginErrorCode.LOAD_FAILED,
            message=f"Load failed: {error}",
            plugin_name=self._name or self._path,
            cause=error,
        ) from error

    def unload(self) -> None:
        """Unload the plugin.

        Does nothing if the plugin was never loaded or is already unloaded.
        The function cache is cleared before the ``Unload`` export runs,
        and the status ends UNLOADED even when the export fails.

        Transitions: LOADED/RELOADING -> UNLOADING -> UNLOADED

        Raises:
            PluginError: SYMBOL_NOT_FOUND if the artifact has no ``Unload``
                export, UNLOAD_FAILED if the export reported an error.
        """
        with self._lock:
            if self._status in (
                PluginStatus.NONE,
                PluginStatus.UNLOADED,
                PluginStatus.UNLOADING,
            ):
                return
            self._unload()

    def _unload(self) -> None:
        self._set_status(PluginStatus.UNLOADING)
        self._cache.clear()
        handle = self._handle
        self._handle = None

        error: BaseException | None = None
        try:
            if handle is None:
                raise PluginError(
                    code=PluginErrorCode.PLUGIN_NOT_LOADED,
                    message="No artifact handle to unload",
                    plugin_name=self._name,
                )
            entry = self._loader.lookup(handle, UNLOAD_SYMBOL)
            error = _export_error(entry())
        except Exception as e:
            error = e
        finally:
            self._set_status(PluginStatus.UNLOADED)

        if error is None:
            logger.info("plugin_unloaded", **self._log_context())
            return

        logger.error("plugin_unload_failed", error=str(error), **self._log_context())
        if isinstance(error, PluginError):
            raise error
        raise PluginError(
            code=PluginErrorCode.UNLOAD_FAILED,
            message=f"Unload failed: {error}",
            plugin_name=self._name,
            cause=error,
        ) from error

    def reload(self) -> None:
        """Unload then load the plugin as one locked operation.

        The new generation re-registers from scratch, so its reported
        version may differ from the previous one.

        Raises:
            PluginError: The first error from either step.
        """
        with self._lock:
            if self._status is PluginStatus.LOADED:
                self._set_status(PluginStatus.RELOADING)
            if self._status is PluginStatus.RELOADING:
                self._unload()
            if self._status in (PluginStatus.NONE, PluginStatus.UNLOADED):
                self._load()
            logger.info("plugin_reloaded", **self._log_context())

    def get_func(self, name: str) -> PluginFunc:
        """Return the invocation closure of an exported function.

        Binds the function on first use in this load generation.

        Args:
            name: Exported function name.

        Returns:
            Callable taking positional arguments and returning the
            fixed-length result list.

        Raises:
            PluginError: PLUGIN_NOT_LOADED, SYMBOL_NOT_FOUND or BIND_FAILED.
        """
        with self._lock:
            if self._handle is None:
                raise PluginError(
                    code=PluginErrorCode.PLUGIN_NOT_LOADED,
                    message="plugin not loaded",
                    plugin_name=self._name or self._path,
                )

            bound = self._cache.get(name)
            if bound is not None:
                return bound.invoke

            symbol = self._loader.lookup(self._handle, name)
            bound = self._binder.bind(name, symbol, plugin_name=self._name)
            self._cache[name] = bound
            return bound.invoke

    def call(self, function: str, *args: Any) -> list[Any]:
        """Invoke an exported function by name.

        Args:
            function: Exported function name.
            *args: Positional arguments for the function.

        Returns:
            The function's result list, or ``[error]`` when the function
            cannot be resolved.
        """
        try:
            func = self.get_func(function)
        except PluginError as e:
            return [e]
        return func(*args)

    def call_outcome(self, function: str, *args: Any) -> CallOutcome:
        """Invoke an exported function and tag the result as success/failure."""
        return CallOutcome.from_results(self.call(function, *args))

    def __repr__(self) -> str:
        return (
            f"Plugin(name={self._name!r}, version=0x{self._version:x}, "
            f"path={self._path!r}, status={self._status.value})"
        )
