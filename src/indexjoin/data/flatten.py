"""Flattening of nested search documents into dot-path leaves."""
from typing import Any, Dict, Mapping


def flatten_document(document: Mapping[str, Any], prefix: str = '') -> Dict[str, Any]:
    """
    Convert a nested document into an ordered ``dot.path -> value`` mapping.

    Nested objects are walked recursively and their keys joined with ``.``.
    Arrays are opaque leaves and are never expanded into indexed sub-paths,
    even when their elements are objects. An empty object is kept as a ``{}``
    leaf so that the field stays visible.

    Args:
        document: Raw document, typically a search hit's ``_source``
        prefix: Path prefix used during recursion

    Returns:
        Insertion-ordered mapping of paths to leaf values
    """
    flattened: Dict[str, Any] = {}
    for key, value in document.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping) and value:
            flattened.update(flatten_document(value, path))
        elif isinstance(value, Mapping):
            flattened[path] = {}
        else:
            flattened[path] = value
    return flattened
