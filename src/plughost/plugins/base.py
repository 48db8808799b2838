"""Core plugin interfaces and base types.

This module defines the fundamental building blocks of the plughost plugin system:
    - PluginStatus: Enumeration of plugin lifecycle states
    - ArtifactHandle: An opened artifact mapped into the interpreter
    - ArtifactLoader: Abstract base class that artifact loaders must implement
    - CallOutcome: Tagged success/failure view over a dynamic call result list

Type aliases:
    - RegisterCallback: Callback handed to an artifact's ``Load`` export
    - PluginFunc: Invocation closure returned by ``Plugin.get_func``
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import ModuleType
from typing import Any

# Callback an artifact calls with its self-declared (name, version)
RegisterCallback = Callable[[str, int], None]

# Dynamic call convention: variable arguments in, fixed-length list out,
# last slot always carries an error value or None
PluginFunc = Callable[..., list[Any]]

# Entry points every artifact must export
LOAD_SYMBOL = "Load"
UNLOAD_SYMBOL = "Unload"


class PluginStatus(str, Enum):
    """Lifecycle states for a plugin.

    State transitions:
        NONE -> LOADING: load() called
        LOADING -> LOADED: artifact registered successfully
        LOADING -> NONE: open, lookup or registration failed
        LOADED -> RELOADING: reload() called
        LOADED/RELOADING -> UNLOADING: unload() called
        UNLOADING -> UNLOADED: unload finished (even if the export failed)
        UNLOADED -> LOADING: load() called again (new generation)
    """

    NONE = "none"
    LOADING = "loading"
    LOADED = "loaded"
    RELOADING = "reloading"
    UNLOADING = "unloading"
    UNLOADED = "unloaded"


@dataclass(frozen=True)
class ArtifactHandle:
    """An artifact mapped into the running interpreter.

    Handle identity is the canonical path: opening the same path twice
    yields the same handle.

    Attributes:
        path: Canonical (resolved) filesystem path of the artifact.
        module: The module object produced by executing the artifact.
    """

    path: Path
    module: ModuleType = field(compare=False, repr=False)


class ArtifactLoader(ABC):
    """Contract for mapping artifacts into the process.

    Implementations must memoize ``open`` per canonical path and must be
    safe for concurrent use: concurrent opens of the same path result in
    a single mapping attempt whose outcome (handle or error) is shared.
    """

    @abstractmethod
    def open(self, path: str | Path) -> ArtifactHandle:
        """Map the artifact at ``path`` into the process.

        Args:
            path: Filesystem path of the artifact.

        Returns:
            The (possibly previously opened) ArtifactHandle.

        Raises:
            PluginError: OPEN_FAILED if the artifact cannot be mapped,
                NOT_IMPLEMENTED if dynamic loading is unsupported.
        """
        ...

    @abstractmethod
    def lookup(self, handle: ArtifactHandle, symbol_name: str) -> Any:
        """Resolve an exported symbol of an opened artifact.

        Args:
            handle: Handle returned by ``open``.
            symbol_name: Name of the exported function or variable.

        Returns:
            The exported object.

        Raises:
            PluginError: SYMBOL_NOT_FOUND if the artifact does not export it.
        """
        ...


@dataclass
class CallOutcome:
    """Tagged view over a positional dynamic call result.

    A result list only follows the "last slot is error" convention; this
    wrapper makes success or failure explicit for callers that do not know
    the function's return arity.

    Attributes:
        success: Whether the last slot was empty.
        values: Every slot except the last.
        error: The error from the last slot, if any.
    """

    success: bool
    values: list[Any] = field(default_factory=list)
    error: BaseException | None = None

    @classmethod
    def from_results(cls, results: list[Any]) -> "CallOutcome":
        """Build an outcome from a result list.

        Args:
            results: List returned by a PluginFunc.

        Returns:
            CallOutcome with the error slot split off.
        """
        if not results:
            return cls(success=True)

        *values, last = results
        if isinstance(last, BaseException):
            return cls(success=False, values=values, error=last)
        return cls(success=True, values=values)
