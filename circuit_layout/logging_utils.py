from __future__ import annotations

import inspect
import logging
import reprlib
from functools import wraps
from typing import Any, Callable, Iterable, MutableMapping, Optional, Sequence, Set, TypeVar, cast

import numpy as np

F = TypeVar("F", bound=Callable[..., Any])

_repr = reprlib.Repr()
_repr.maxother = 160
_repr.maxdict = 10
_repr.maxlist = 10


def _summarize_array(value: np.ndarray, max_items: int) -> str:
    parts = [f"ndarray(shape={tuple(value.shape)})"]
    if value.size == 0:
        return parts[0]
    if value.size <= max_items:
        parts.append(f"values={_repr.repr(value.tolist())}")
    else:
        parts.append(f"min={float(value.min()):.6g}")
        parts.append(f"max={float(value.max()):.6g}")
    return ", ".join(parts)


def _safe_repr(value: Any, *, max_items: int = 5, max_length: int = 400) -> str:
    if isinstance(value, np.ndarray):
        return _summarize_array(value, max_items)

    # Layout objects summarize themselves by kind and name instead of dumping state
    kind = getattr(value, "kind", None)
    name = getattr(value, "name", None)
    if isinstance(name, str) and kind is not None and not isinstance(value, dict):
        kind_text = getattr(kind, "value", kind)
        return f"<{type(value).__name__} {kind_text} {name!r}>"

    if isinstance(value, dict):
        items = []
        for idx, (key, val) in enumerate(value.items()):
            if idx >= max_items:
                items.append("...")
                break
            items.append(f"{_safe_repr(key)}: {_safe_repr(val)}")
        return "{" + ", ".join(items) + "}"

    if isinstance(value, (list, tuple)):
        open_br, close_br = ("(", ")") if isinstance(value, tuple) else ("[", "]")
        items = [_safe_repr(item) for item in value[:max_items]]
        if len(value) > max_items:
            items.append(f"... ({len(value)} items)")
        return f"{open_br}{', '.join(items)}{close_br}"

    try:
        rendered = _repr.repr(value)
    except Exception as exc:  # pragma: no cover - repr of foreign objects
        rendered = f"<repr-error {exc!r}>"
    if len(rendered) > max_length:
        return rendered[:max_length] + "... (truncated)"
    return rendered


def _format_arguments(args: Sequence[Any], kwargs: MutableMapping[str, Any]) -> str:
    parts = []
    if args:
        parts.append("args=[" + ", ".join(_safe_repr(arg) for arg in args) + "]")
    if kwargs:
        parts.append("kwargs={" + ", ".join(f"{key}={_safe_repr(value)}" for key, value in kwargs.items()) + "}")
    return ", ".join(parts) if parts else "no-args"


def debug_log_call(
    logger: logging.Logger, *, name: Optional[str] = None, log_result: bool = True
) -> Callable[[F], F]:
    """Return a decorator that emits DEBUG logs on entry and exit of a call."""

    def decorator(func: F) -> F:
        if getattr(func, "_debug_logging_wrapped", False):
            return func

        qualname = name or getattr(func, "__qualname__", getattr(func, "__name__", "<callable>"))

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any):
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Entering %s (%s)", qualname, _format_arguments(args, kwargs))
            try:
                result = func(*args, **kwargs)
            except Exception:
                if logger.isEnabledFor(logging.DEBUG):
                    logger.exception("Exception in %s", qualname)
                raise
            if logger.isEnabledFor(logging.DEBUG):
                if log_result:
                    logger.debug("Exiting %s -> %s", qualname, _safe_repr(result))
                else:
                    logger.debug("Exiting %s", qualname)
            return result

        setattr(wrapper, "_debug_logging_wrapped", True)
        return cast(F, wrapper)

    return decorator


def apply_debug_logging(
    namespace: MutableMapping[str, Any],
    *,
    logger: Optional[logging.Logger] = None,
    skip: Optional[Iterable[str]] = None,
) -> None:
    """Wrap the functions defined in a module namespace with :func:`debug_log_call`."""

    module_name = namespace.get("__name__")
    if not isinstance(module_name, str):  # pragma: no cover - always set for modules
        module_name = None
    logger = logger or logging.getLogger(module_name or __name__)
    skip_set: Set[str] = set(skip or [])

    for name, value in list(namespace.items()):
        if name in skip_set:
            continue
        if inspect.isfunction(value) and getattr(value, "__module__", None) == module_name:
            namespace[name] = debug_log_call(logger, name=name)(value)
