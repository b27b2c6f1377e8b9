from __future__ import annotations

from typing import Any, Iterable


class _Missing:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def get_path(data: Any, path: str) -> Any:
    """Resolve a dotted path ("customer.email", "items.0.product_id") in nested dicts/lists.

    Returns MISSING when any segment is absent; a present JSON null is returned as None.
    """
    if not path:
        return MISSING
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, list):
            try:
                index = int(part)
            except ValueError:
                return MISSING
            if index < 0 or index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def first_present(data: Any, paths: Iterable[str]) -> Any:
    """First value that is present and non-empty across candidate paths."""
    for path in paths:
        value = get_path(data, path)
        if value is MISSING or value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return MISSING


def first_text(data: Any, paths: Iterable[str]) -> str:
    value = first_present(data, paths)
    if value is MISSING:
        return ""
    return str(value).strip()
