"""Coerce JSON-encoded tool parameters.

MCP clients sometimes send list parameters as JSON strings ("[\"a\", \"b\"]")
or as a bare comma-separated string. Tools decorated with json_convert
receive real lists for every parameter annotated with a list type.
"""

import functools
import inspect
import json
import types
from collections.abc import Callable
from typing import Any, TypeVar, get_args, get_origin, get_type_hints

F = TypeVar("F", bound=Callable[..., Any])


def _accepts_list(annotation: Any) -> bool:
    if annotation is list or get_origin(annotation) is list:
        return True
    if get_origin(annotation) is types.UnionType:
        return any(_accepts_list(arg) for arg in get_args(annotation))
    return False


def coerce_str_list(value: Any, param_name: str) -> list[str] | None:
    """Turn a list, JSON array string or comma-separated string into a list of strings.

    Raises:
        ValueError: If value is a malformed JSON array or holds non-string items
    """
    if value is None or isinstance(value, list):
        items = value
    elif isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                items = json.loads(text)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON in parameter '{param_name}': {e}") from e
            if not isinstance(items, list):
                raise ValueError(f"Parameter '{param_name}' must be a list")
        else:
            items = [part.strip() for part in text.split(",") if part.strip()]
    else:
        raise ValueError(f"Parameter '{param_name}' must be a list, got {type(value).__name__}")

    if items is None:
        return None
    if not all(isinstance(item, str) for item in items):
        raise ValueError(f"Parameter '{param_name}' must contain only strings")
    return items


def json_convert(func: F) -> F:
    """Decorator converting list-typed parameters of a (sync or async) tool function.

    Invalid input short-circuits with {"error": {"code": "INVALID_INPUT", ...}}.
    """
    sig = inspect.signature(func)
    hints = get_type_hints(func)
    list_params = {name for name, annotation in hints.items() if name != "return" and _accepts_list(annotation)}

    def convert(args, kwargs) -> dict[str, Any]:
        bound = sig.bind(*args, **kwargs)
        bound.apply_defaults()
        converted = dict(bound.arguments)
        for name in list_params:
            if name in converted:
                converted[name] = coerce_str_list(converted[name], name)
        return converted

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            try:
                converted = convert(args, kwargs)
            except ValueError as e:
                return {"error": {"code": "INVALID_INPUT", "message": str(e)}}
            return await func(**converted)

        return async_wrapper  # type: ignore

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            converted = convert(args, kwargs)
        except ValueError as e:
            return {"error": {"code": "INVALID_INPUT", "message": str(e)}}
        return func(**converted)

    return wrapper  # type: ignore
