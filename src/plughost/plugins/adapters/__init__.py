"""Artifact loaders for mapping plugins into the process.

Loaders implement the ArtifactLoader contract:
    - ImportlibArtifactLoader: Maps source, bytecode and extension modules
    - UnsupportedArtifactLoader: Stub for hosts without dynamic loading

The process-wide default loader guarantees that a given path is mapped
at most once per process, whichever plugin or manager opens it.
"""

import threading

from plughost.plugins.adapters.importlib_loader import ImportlibArtifactLoader
from plughost.plugins.adapters.unsupported import UnsupportedArtifactLoader
from plughost.plugins.base import ArtifactLoader

__all__ = [
    "ImportlibArtifactLoader",
    "UnsupportedArtifactLoader",
    "create_loader",
    "get_default_loader",
]

_default_loader: ImportlibArtifactLoader | None = None
_default_loader_lock = threading.Lock()


def get_default_loader() -> ImportlibArtifactLoader:
    """Return the process-wide importlib loader, creating it on first use."""
    global _default_loader
    with _default_loader_lock:
        if _default_loader is None:
            _default_loader = ImportlibArtifactLoader()
        return _default_loader


def create_loader(dynamic_loading: bool = True) -> ArtifactLoader:
    """Select the loader for a manager.

    Args:
        dynamic_loading: False selects the NOT_IMPLEMENTED stub.

    Returns:
        The process-wide importlib loader or an UnsupportedArtifactLoader.
    """
    if not dynamic_loading:
        return UnsupportedArtifactLoader()
    return get_default_loader()
