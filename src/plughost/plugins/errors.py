"""Plugin error types and error codes.

This module defines the error hierarchy for the plugin host, providing
specific error codes for the lifecycle, binding and dynamic call paths.

Classes:
    - PluginErrorCode: Enum of error codes for categorizing plugin errors
    - PluginError: Exception raised (or returned in the last result slot)
      for all plugin-related failures
"""

from enum import Enum


class PluginErrorCode(str, Enum):
    """Error codes for plugin operations.

    Used to categorize errors for logging and caller-side handling.
    Lifecycle errors are raised; dynamic call errors are returned as
    values in the last result slot.
    """

    # Artifact errors
    OPEN_FAILED = "OPEN_FAILED"
    SYMBOL_NOT_FOUND = "SYMBOL_NOT_FOUND"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"

    # Lifecycle errors
    LOAD_FAILED = "LOAD_FAILED"
    UNLOAD_FAILED = "UNLOAD_FAILED"
    DUPLICATE_LOAD = "DUPLICATE_LOAD"
    PLUGIN_NOT_LOADED = "PLUGIN_NOT_LOADED"
    PLUGIN_NOT_FOUND = "PLUGIN_NOT_FOUND"

    # Dynamic call errors
    BIND_FAILED = "BIND_FAILED"
    ARITY_MISMATCH = "ARITY_MISMATCH"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    CALL_FAILED = "CALL_FAILED"
    TIMEOUT = "TIMEOUT"

    # Configuration errors
    CONFIG_INVALID = "CONFIG_INVALID"


class PluginError(Exception):
    """Base exception for plugin errors.

    Attributes:
        code: The error code categorizing this error.
        message: Human-readable error message.
        plugin_name: Name of the plugin that caused the error (if applicable).
        cause: The underlying exception that caused this error (if any).

    Example:
        raise PluginError(
            code=PluginErrorCode.OPEN_FAILED,
            message="No such file: /plugins/echo.py",
            plugin_name="/plugins/echo.py",
            cause=original_exception,
        )
    """

    def __init__(
        self,
        code: PluginErrorCode,
        message: str,
        plugin_name: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize the plugin error.

        Args:
            code: The error code for this error.
            message: Human-readable error message.
            plugin_name: Name of the plugin (optional).
            cause: The underlying exception (optional).
        """
        self.code = code
        self.message = message
        self.plugin_name = plugin_name
        self.cause = cause

        full_message = f"[{code.value}] {message}"
        if plugin_name:
            full_message = f"[{plugin_name}] {full_message}"

        super().__init__(full_message)
