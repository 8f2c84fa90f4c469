"""
Helper functions for index directives.
"""

from collections.abc import Mapping
from typing import Any

from pymongo import ASCENDING


def normalize_keys(
    keys: str | Mapping[str, Any] | list[tuple[str, Any]],
) -> list[tuple[str, Any]]:
    """
    Normalize index keys to a list of (field_name, direction) tuples.

    Args:
        keys: A single field name, a mapping or a list of tuples

    Returns:
        List of (field_name, direction) tuples
    """
    if isinstance(keys, str):
        return [(keys, ASCENDING)]
    if isinstance(keys, Mapping):
        return [(k, v) for k, v in keys.items()]
    return [tuple(pair) for pair in keys]


def is_id_index(keys: list[tuple[str, Any]]) -> bool:
    """True when the keys only target ``_id``, which MongoDB indexes automatically."""
    return len(keys) == 1 and keys[0][0] == "_id"
