"""Lookups over the untyped JSON tree decoded from the GLB JSON chunk."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple, Union


class _Missing:
    """Marks a key that is absent, distinct from an explicit JSON null."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()

Key = Union[str, int]


def get(node: Any, *path: Key) -> Any:
    for key in path:
        if isinstance(key, int):
            if not isinstance(node, list) or not -len(node) <= key < len(node):
                return MISSING
            node = node[key]
        else:
            if not isinstance(node, dict) or key not in node:
                return MISSING
            node = node[key]
    return node


def get_object(node: Any, *path: Key) -> Optional[Dict[str, Any]]:
    value = get(node, *path)
    return value if isinstance(value, dict) else None


def get_list(node: Any, *path: Key) -> List[Any]:
    value = get(node, *path)
    return value if isinstance(value, list) else []


def get_str(node: Any, *path: Key) -> Optional[str]:
    value = get(node, *path)
    return value if isinstance(value, str) else None


def get_float(node: Any, *path: Key, default: Optional[float] = None) -> Optional[float]:
    value = get(node, *path)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def get_bool(node: Any, *path: Key, default: bool = False) -> bool:
    value = get(node, *path)
    return value if isinstance(value, bool) else default


def get_index(node: Any, *path: Key, count: Optional[int] = None) -> Optional[int]:
    """Return a non-negative integer index, or None when absent or out of range."""
    value = get(node, *path)
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or value < 0:
        return None
    if count is not None and value >= count:
        return None
    return value


def get_vec3(node: Any, *path: Key) -> Optional[Tuple[float, float, float]]:
    """Read a VRM 0.x ``{"x":..,"y":..,"z":..}`` vector."""
    value = get_object(node, *path)
    if value is None:
        return None
    return (
        get_float(value, "x", default=0.0),
        get_float(value, "y", default=0.0),
        get_float(value, "z", default=0.0),
    )


def get_numbers(node: Any, *path: Key, length: Optional[int] = None) -> Optional[List[float]]:
    value = get(node, *path)
    if not isinstance(value, list):
        return None
    if length is not None and len(value) != length:
        return None
    out: List[float] = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (int, float)):
            return None
        out.append(float(item))
    return out


def lower_camel(value: str) -> str:
    return value[:1].lower() + value[1:] if value else value

