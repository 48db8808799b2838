"""Artifact loader for hosts without dynamic loading.

Selected when ``plugin_settings.dynamic_loading`` is false. Every
operation fails with NOT_IMPLEMENTED, so plugins stay in the NONE state
and callers see an explicit error instead of a silent no-op.
"""

from pathlib import Path
from typing import Any

from plughost.plugins.base import ArtifactHandle, ArtifactLoader
from plughost.plugins.errors import PluginError, PluginErrorCode


class UnsupportedArtifactLoader(ArtifactLoader):
    """Loader stub that refuses every request."""

    def open(self, path: str | Path) -> ArtifactHandle:
        raise PluginError(
            code=PluginErrorCode.NOT_IMPLEMENTED,
            message="Dynamic loading is not supported on this host",
            plugin_name=str(path),
        )

    def lookup(self, handle: ArtifactHandle, symbol_name: str) -> Any:
        raise PluginError(
            code=PluginErrorCode.NOT_IMPLEMENTED,
            message="Dynamic loading is not supported on this host",
            plugin_name=str(handle.path),
        )
