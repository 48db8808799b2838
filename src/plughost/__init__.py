"""plughost: lifecycle management for dynamically loaded plugins.

Package-level helpers operate on a process-wide default manager; see
``plughost.plugins`` for the core types.
"""

from plughost.host import (
    call,
    get_func,
    get_manager,
    get_plugin,
    get_plugin_with_version,
    start_manager,
    stop_manager,
)

__all__ = [
    "call",
    "get_func",
    "get_manager",
    "get_plugin",
    "get_plugin_with_version",
    "start_manager",
    "stop_manager",
]
