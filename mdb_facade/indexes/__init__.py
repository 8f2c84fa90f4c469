"""
Schema and index management.
"""

from .helpers import is_id_index, normalize_keys
from .schema import IndexDirective, SchemaAccessor, SchemaBuilder

__all__ = [
    "SchemaBuilder",
    "SchemaAccessor",
    "IndexDirective",
    "normalize_keys",
    "is_id_index",
]
