"""Reflective binding of plugin-exported functions.

This module turns an exported callable into a BoundFunction: a signature
descriptor captured once at bind time plus an invocation closure that
validates every call against it.

Call convention:
    Every bound function is invoked with positional arguments and returns
    a list of exactly ``return_arity`` items. The last item is an error
    slot: None on success, a PluginError (or the plugin's own error) on
    failure. Validation failures and exceptions raised by the plugin never
    propagate to the caller; they land in the error slot with every other
    slot left as None.

Type checking is strict: an argument matches a declared parameter type
only when its runtime type has exactly the declared name. Subclasses do
not match (``True`` is not accepted for an ``int`` parameter).

Classes:
    - TypeTag: Expected type(s) of one parameter
    - BoundFunction: Cached signature and invocation closure
    - FunctionBinder: Builds BoundFunctions from exported symbols
"""

import builtins
import inspect
import types
import typing
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from plughost.plugins.base import PluginFunc
from plughost.plugins.errors import PluginError, PluginErrorCode

logger = structlog.get_logger()

# Annotation names that impose no constraint when left unresolved
_UNCONSTRAINED_NAMES = frozenset({"Any", "Optional", "Union", "object"})


@dataclass(frozen=True)
class TypeTag:
    """Expected runtime type names for one parameter.

    An empty ``names`` tuple accepts any value.

    Attributes:
        names: Accepted ``type(value).__name__`` values.
    """

    names: tuple[str, ...] = ()

    @property
    def accepts_any(self) -> bool:
        return not self.names

    def matches(self, value: Any) -> bool:
        """Return True if ``value``'s exact type name is accepted."""
        return self.accepts_any or type(value).__name__ in self.names

    def __str__(self) -> str:
        return " | ".join(self.names) if self.names else "Any"

    @classmethod
    def from_annotation(cls, annotation: Any) -> "TypeTag":
        """Derive a tag from a parameter annotation.

        Args:
            annotation: A resolved annotation, an unresolved string
                annotation, or ``inspect.Parameter.empty``.

        Returns:
            The TypeTag for the annotation.
        """
        if annotation is inspect.Parameter.empty or annotation is Any:
            return cls()
        if annotation is None or annotation is type(None):
            return cls(("NoneType",))
        if isinstance(annotation, str):
            return cls._from_string(annotation)
        if isinstance(annotation, typing.TypeVar):
            return cls()

        origin = typing.get_origin(annotation)
        if origin is typing.Union or origin is types.UnionType:
            names: list[str] = []
            for member in typing.get_args(annotation):
                tag = cls.from_annotation(member)
                if tag.accepts_any:
                    return cls()
                names.extend(tag.names)
            return cls(tuple(names))
        if origin is not None:
            annotation = origin

        if not isinstance(annotation, type):
            return cls()
        # Abstract protocols never equal a concrete runtime type name
        if annotation.__module__ in ("typing", "collections.abc") or annotation is object:
            return cls()
        return cls((annotation.__name__,))

    @classmethod
    def _from_string(cls, annotation: str) -> "TypeTag":
        names = []
        for part in annotation.split("|"):
            name = part.split("[", 1)[0].strip().rsplit(".", 1)[-1]
            if name in _UNCONSTRAINED_NAMES or not name:
                return cls()
            names.append("NoneType" if name == "None" else name)
        return cls(tuple(names))


@dataclass(frozen=True)
class BoundFunction:
    """A plugin function bound for dynamic invocation.

    Attributes:
        name: Exported name the function was bound under.
        parameter_types: Expected type of each positional argument.
        return_arity: Length of every result list, error slot included.
        returns_error: True when the function fills the error slot itself.
        invoke: Closure that validates and dispatches a call.
    """

    name: str
    parameter_types: tuple[TypeTag, ...]
    return_arity: int
    returns_error: bool
    invoke: PluginFunc


def _is_error_annotation(annotation: Any) -> bool:
    """Return True if ``annotation`` describes an error slot value."""
    if isinstance(annotation, type):
        return issubclass(annotation, BaseException)
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        members = [m for m in typing.get_args(annotation) if m is not type(None)]
        return bool(members) and all(_is_error_annotation(m) for m in members)
    return False


def _split_top_level(text: str) -> list[str]:
    """Split ``text`` on commas that are not nested inside brackets."""
    parts: list[str] = []
    depth = 0
    current = ""
    for char in text:
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
        elif char == "," and depth == 0:
            parts.append(current.strip())
            current = ""
            continue
        current += char
    if current.strip():
        parts.append(current.strip())
    return parts


def _is_error_name(text: str) -> bool:
    """Return True if an unresolved annotation names an error slot value."""
    text = text.strip()
    if text.startswith("Optional[") and text.endswith("]"):
        text = text[len("Optional[") : -1]
    names = [
        part.strip().rsplit(".", 1)[-1]
        for part in text.split("|")
        if part.strip() not in ("None", "NoneType")
    ]
    if not names:
        return False
    for name in names:
        builtin = getattr(builtins, name, None)
        if isinstance(builtin, type) and issubclass(builtin, BaseException):
            continue
        if not name.endswith(("Error", "Exception")):
            return False
    return True


def _string_return_shape(annotation: str) -> tuple[int, bool]:
    """Compute (return_arity, returns_error) from an unresolved annotation."""
    text = annotation.strip()
    if text in ("None", "NoneType"):
        return 1, False

    head, _, rest = text.partition("[")
    if head.rsplit(".", 1)[-1] not in ("tuple", "Tuple") or not rest.endswith("]"):
        return 2, False

    args = _split_top_level(rest[:-1])
    if len(args) == 2 and args[1] == "...":
        return 2, False
    if not args or args == ["()"]:
        return 1, False
    if _is_error_name(args[-1]):
        return len(args), True
    return len(args) + 1, False


def _return_shape(annotation: Any) -> tuple[int, bool]:
    """Compute (return_arity, returns_error) from a return annotation."""
    if annotation is None or annotation is type(None):
        return 1, False
    if isinstance(annotation, str):
        return _string_return_shape(annotation)

    if typing.get_origin(annotation) is tuple:
        args = typing.get_args(annotation)
        if len(args) == 2 and args[1] is Ellipsis:
            return 2, False
        if args == ((),):
            return 1, False
        if args and _is_error_annotation(args[-1]):
            return len(args), True
        return len(args) + 1, False

    return 2, False


class FunctionBinder:
    """Builds BoundFunctions from exported symbols.

    Binding inspects the symbol's signature once; the resulting closure
    reuses it for every call and is safe to invoke concurrently.

    Example:
        binder = FunctionBinder()
        bound = binder.bind("Echo", module.Echo)
        bound.invoke("hi")  # ["hi", None]
        bound.invoke()  # [None, PluginError(ARITY_MISMATCH)]
    """

    def bind(
        self,
        name: str,
        symbol: Any,
        plugin_name: str | None = None,
    ) -> BoundFunction:
        """Capture the signature of ``symbol`` and build its invoker.

        Args:
            name: Exported name of the symbol.
            symbol: The exported object.
            plugin_name: Owning plugin, used as error context.

        Returns:
            The BoundFunction for the symbol.

        Raises:
            PluginError: BIND_FAILED if the symbol is not callable or its
                signature cannot be introspected.
        """
        if not callable(symbol):
            raise PluginError(
                code=PluginErrorCode.BIND_FAILED,
                message=f"Symbol is not callable: {name}",
                plugin_name=plugin_name,
            )

        try:
            signature = inspect.signature(symbol)
        except (TypeError, ValueError) as e:
            raise PluginError(
                code=PluginErrorCode.BIND_FAILED,
                message=f"Cannot inspect signature of {name}: {e}",
                plugin_name=plugin_name,
                cause=e,
            ) from e

        hints = self._type_hints(symbol)
        parameter_types = tuple(
            TypeTag.from_annotation(hints.get(param.name, param.annotation))
            for param in signature.parameters.values()
            if param.kind
            in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
        )
        return_arity, returns_error = _return_shape(
            hints.get("return", signature.return_annotation)
        )

        invoke = self._make_invoker(
            name, symbol, parameter_types, return_arity, returns_error, plugin_name
        )

        logger.debug(
            "plugin_function_bound",
            plugin=plugin_name,
            function=name,
            params=[str(t) for t in parameter_types],
            return_arity=return_arity,
        )
        return BoundFunction(
            name=name,
            parameter_types=parameter_types,
            return_arity=return_arity,
            returns_error=returns_error,
            invoke=invoke,
        )

    @staticmethod
    def _type_hints(symbol: Any) -> dict[str, Any]:
        """Resolve each annotation of ``symbol`` on its own.

        An annotation that cannot be evaluated (a name imported only under
        ``TYPE_CHECKING``, a typo) keeps its source text without affecting
        the others.
        """
        target = symbol
        if not (inspect.isfunction(symbol) or inspect.ismethod(symbol)):
            target = getattr(symbol, "__call__", symbol)
        try:
            annotations = inspect.get_annotations(target)
        except (TypeError, ValueError):
            return {}

        namespace = getattr(inspect.unwrap(target), "__globals__", {})
        hints: dict[str, Any] = {}
        for name, annotation in annotations.items():
            if not isinstance(annotation, str):
                hints[name] = annotation
                continue
            try:
                hints[name] = eval(annotation, namespace)  # noqa: S307
            except Exception:
                hints[name] = annotation
        return hints

    @staticmethod
    def _make_invoker(
        name: str,
        symbol: Any,
        parameter_types: tuple[TypeTag, ...],
        return_arity: int,
        returns_error: bool,
        plugin_name: str | None,
    ) -> PluginFunc:
        value_slots = return_arity - 1

        def fail(code: PluginErrorCode, message: str, cause: Exception | None = None):
            out: list[Any] = [None] * return_arity
            out[-1] = PluginError(
                code=code,
                message=message,
                plugin_name=plugin_name,
                cause=cause,
            )
            return out

        def invoke(*params: Any) -> list[Any]:
            if len(params) != len(parameter_types):
                message = (
                    f"failed to call [{name}], expected {len(parameter_types)} "
                    f"params, got {len(params)}"
                )
                logger.warning("plugin_call_rejected", plugin=plugin_name, error=message)
                return fail(PluginErrorCode.ARITY_MISMATCH, message)

            for index, (tag, param) in enumerate(zip(parameter_types, params)):
                if not tag.matches(param):
                    message = (
                        f"failed to call [{name}], params[{index}] require type "
                        f"{tag}, got {type(param).__name__}"
                    )
                    logger.warning(
                        "plugin_call_rejected", plugin=plugin_name, error=message
                    )
                    return fail(PluginErrorCode.TYPE_MISMATCH, message)

            try:
                result = symbol(*params)
            except Exception as e:
                logger.error(
                    "plugin_call_failed",
                    plugin=plugin_name,
                    function=name,
                    error=str(e),
                )
                return fail(
                    PluginErrorCode.CALL_FAILED,
                    f"[{name}] raised {type(e).__name__}: {e}",
                    cause=e,
                )

            if returns_error:
                if not isinstance(result, Sequence) or len(result) != return_arity:
                    return fail(
                        PluginErrorCode.CALL_FAILED,
                        f"[{name}] must return {return_arity} values",
                    )
                return list(result)

            if value_slots == 0:
                return [None]
            if value_slots == 1:
                return [result, None]
            if not isinstance(result, Sequence) or len(result) != value_slots:
                return fail(
                    PluginErrorCode.CALL_FAILED,
                    f"[{name}] must return {value_slots} values",
                )
            return [*result, None]

        return invoke
