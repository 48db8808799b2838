"""Importlib-backed artifact loader.

This module maps plugin artifacts into the running interpreter using
importlib. Any file the import system can execute from a path is a valid
artifact: Python source, compiled bytecode, or a native extension module.

Classes:
    - ImportlibArtifactLoader: Memoized, thread-safe artifact loader
"""

import hashlib
import importlib.machinery
import importlib.util
import sys
import threading
from pathlib import Path
from typing import Any

import structlog

from plughost.plugins.base import ArtifactHandle, ArtifactLoader
from plughost.plugins.errors import PluginError, PluginErrorCode

logger = structlog.get_logger()


class _OpenEntry:
    """Outcome of the single mapping attempt for one path."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.handle: ArtifactHandle | None = None
        self.error: PluginError | None = None


class ImportlibArtifactLoader(ArtifactLoader):
    """Loads artifacts with importlib and memoizes them per canonical path.

    The first caller to open a path performs the mapping; concurrent
    callers for the same path wait on that attempt and then share its
    handle, or its error if the mapping failed. Failed opens are cached
    too, so a broken artifact is not executed twice.

    Mappings live for the lifetime of the loader. Modules are published
    in ``sys.modules`` under a name derived from the canonical path so
    that code inside the artifact (dataclasses, pickling) can find its
    own module.

    Example:
        loader = ImportlibArtifactLoader()
        handle = loader.open("/plugins/echo.py")
        load = loader.lookup(handle, "Load")
    """

    MODULE_PREFIX = "plughost_artifact_"

    def __init__(self) -> None:
        """Initialize an empty loader."""
        self._entries: dict[Path, _OpenEntry] = {}
        self._lock = threading.Lock()

    def open(self, path: str | Path) -> ArtifactHandle:
        """Open an artifact, mapping it on first use.

        Args:
            path: Filesystem path of the artifact.

        Returns:
            The shared ArtifactHandle for the canonical path.

        Raises:
            PluginError: OPEN_FAILED if the artifact cannot be mapped.
        """
        canonical = Path(path).resolve()

        with self._lock:
            entry = self._entries.get(canonical)
            owner = entry is None
            if owner:
                entry = _OpenEntry()
                self._entries[canonical] = entry

        if owner:
            try:
                entry.handle = self._map_artifact(canonical)
            except PluginError as e:
                entry.error = e
            except Exception as e:
                entry.error = PluginError(
                    code=PluginErrorCode.OPEN_FAILED,
                    message=f"Failed to open artifact: {e}",
                    plugin_name=str(canonical),
                    cause=e,
                )
            except BaseException as e:
                # Later opens see the abort; this caller gets it re-raised
                entry.error = PluginError(
                    code=PluginErrorCode.OPEN_FAILED,
                    message=f"Artifact aborted while executing: {e!r}",
                    plugin_name=str(canonical),
                    cause=e,
                )
                raise
            finally:
                entry.done.set()
        else:
            entry.done.wait()

        if entry.error is not None:
            raise entry.error
        if entry.handle is None:
            raise PluginError(
                code=PluginErrorCode.OPEN_FAILED,
                message="Artifact mapping was interrupted",
                plugin_name=str(canonical),
            )
        return entry.handle

    def lookup(self, handle: ArtifactHandle, symbol_name: str) -> Any:
        """Resolve a module-level attribute of an opened artifact.

        Args:
            handle: Handle returned by ``open``.
            symbol_name: Name of the exported symbol.

        Returns:
            The exported object.

        Raises:
            PluginError: SYMBOL_NOT_FOUND if the attribute does not exist.
        """
        try:
            return getattr(handle.module, symbol_name)
        except AttributeError as e:
            raise PluginError(
                code=PluginErrorCode.SYMBOL_NOT_FOUND,
                message=f"Symbol not found: {symbol_name}",
                plugin_name=str(handle.path),
                cause=e,
            ) from e

    def is_open(self, path: str | Path) -> bool:
        """Return True if a mapping attempt for ``path`` has completed."""
        entry = self._entries.get(Path(path).resolve())
        return entry is not None and entry.done.is_set()

    def _module_name(self, path: Path) -> str:
        """Derive the ``sys.modules`` name for an artifact.

        Extension modules keep their stem as the last name component
        because the interpreter resolves their ``PyInit_<stem>`` entry
        point from it.
        """
        digest = hashlib.sha256(str(path).encode()).hexdigest()[:12]
        stem = path.name.split(".", 1)[0]
        if any(path.name.endswith(s) for s in importlib.machinery.EXTENSION_SUFFIXES):
            return f"{self.MODULE_PREFIX}{digest}.{stem}"
        return f"{self.MODULE_PREFIX}{digest}_{stem}"

    def _map_artifact(self, path: Path) -> ArtifactHandle:
        """Execute the artifact at ``path`` and wrap it in a handle.

        Args:
            path: Canonical artifact path.

        Returns:
            A new ArtifactHandle.

        Raises:
            PluginError: OPEN_FAILED if the file is missing, of an
                unsupported type, or raises while executing.
        """
        if not path.is_file():
            raise PluginError(
                code=PluginErrorCode.OPEN_FAILED,
                message=f"Artifact not found: {path}",
                plugin_name=str(path),
            )

        module_name = self._module_name(path)
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise PluginError(
                code=PluginErrorCode.OPEN_FAILED,
                message=f"Unsupported artifact type: {path.name}",
                plugin_name=str(path),
            )

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module

        try:
            spec.loader.exec_module(module)
        except BaseException as e:
            sys.modules.pop(module_name, None)
            logger.error("artifact_open_failed", path=str(path), error=repr(e))
            if not isinstance(e, Exception):
                raise
            raise PluginError(
                code=PluginErrorCode.OPEN_FAILED,
                message=f"Failed to execute artifact: {e}",
                plugin_name=str(path),
                cause=e,
            ) from e

        logger.info("artifact_opened", path=str(path), module=module_name)
        return ArtifactHandle(path=path, module=module)
