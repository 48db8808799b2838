"""plughost plugin system.

This package provides the lifecycle core of the plugin host: loading
artifacts into the process, binding their exported functions for dynamic
invocation, and tracking each plugin's load state.

Core Components:
    - base: Status enum, artifact handle and loader contract (PluginStatus, ArtifactLoader)
    - errors: Error codes and the PluginError exception
    - adapters: Artifact loaders (ImportlibArtifactLoader, UnsupportedArtifactLoader)
    - binder: Reflective function binding (FunctionBinder, BoundFunction)
    - lifecycle: Single-plugin state machine (Plugin)
    - manager: Registry and call routing (PluginManager)
    - config: Configuration models (PluginHostSettings, PluginSettings, PluginConfig)
"""

from plughost.plugins.base import (
    ArtifactHandle,
    ArtifactLoader,
    CallOutcome,
    PluginStatus,
)
from plughost.plugins.errors import PluginError, PluginErrorCode

__all__ = [
    "ArtifactHandle",
    "ArtifactLoader",
    "CallOutcome",
    "PluginError",
    "PluginErrorCode",
    "PluginStatus",
]


def __getattr__(name: str):
    """Lazy import for modules that pull in the rest of the stack."""
    if name in ("PluginHostSettings", "PluginSettings", "PluginConfig"):
        from plughost.plugins import config

        return getattr(config, name)
    if name in ("FunctionBinder", "BoundFunction", "TypeTag"):
        from plughost.plugins import binder

        return getattr(binder, name)
    if name == "Plugin":
        from plughost.plugins import lifecycle

        return lifecycle.Plugin
    if name == "PluginManager":
        from plughost.plugins import manager

        return manager.PluginManager
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
