"""Join key extraction and canonicalization."""
import json
import math
from enum import Enum
from typing import Any, Literal, Mapping, NamedTuple, Optional

MISSING_KEY_LABEL = 'N/A'
KEYWORD_SUFFIX = '.keyword'

KeyMode = Literal['typed', 'string']

_MISSING = object()


class KeyKind(str, Enum):
    STRING = 'string'
    NUMBER = 'number'
    BOOLEAN = 'boolean'
    ARRAY = 'array'
    OBJECT = 'object'


class CanonicalKey(NamedTuple):
    """Tagged join key. Two keys match only when kind and value are equal."""
    kind: KeyKind
    value: Any

    @property
    def label(self) -> str:
        """Display form of the key."""
        if self.kind is KeyKind.BOOLEAN:
            return 'true' if self.value else 'false'
        return str(self.value)


def key_label(key: Optional[CanonicalKey]) -> str:
    return key.label if key is not None else MISSING_KEY_LABEL


def qualified_label(key: Optional[CanonicalKey]) -> str:
    """Label that stays distinct across kinds: ``"5"`` for strings, ``5 (number)`` otherwise."""
    if key is None:
        return f"{MISSING_KEY_LABEL} (missing)"
    if key.kind is KeyKind.STRING:
        return json.dumps(key.value, ensure_ascii=False)
    return f"{key.label} ({key.kind.value})"


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(',', ':'), default=str)


def _normalize_number(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _stringify(value: Any) -> str:
    """String form used by 'string' key mode."""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (int, float)):
        return str(_normalize_number(value))
    if isinstance(value, (list, tuple, dict)):
        return _canonical_json(value)
    return str(value)


def canonicalize(value: Any, mode: KeyMode = 'typed') -> Optional[CanonicalKey]:
    """
    Convert an extracted value to its canonical comparison form.

    ``None`` and NaN have no key. In 'typed' mode numbers, strings, booleans,
    arrays and objects are distinct kinds; int-valued floats equal ints.
    In 'string' mode every value is stringified first, so ``5`` matches ``"5"``.
    """
    if value is None or value is _MISSING:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None

    if mode == 'string':
        return CanonicalKey(KeyKind.STRING, _stringify(value))

    if isinstance(value, bool):
        return CanonicalKey(KeyKind.BOOLEAN, value)
    if isinstance(value, (int, float)):
        return CanonicalKey(KeyKind.NUMBER, _normalize_number(value))
    if isinstance(value, str):
        return CanonicalKey(KeyKind.STRING, value)
    if isinstance(value, (list, tuple)):
        return CanonicalKey(KeyKind.ARRAY, _canonical_json(list(value)))
    if isinstance(value, Mapping):
        return CanonicalKey(KeyKind.OBJECT, _canonical_json(dict(value)))
    return CanonicalKey(KeyKind.STRING, str(value))


def _walk(document: Mapping[str, Any], field_path: str) -> Any:
    value: Any = document
    for part in field_path.split('.'):
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        else:
            return _MISSING
    return value


def extract_value(flattened: Mapping[str, Any], field_path: str,
                  raw_document: Optional[Mapping[str, Any]] = None) -> Any:
    """
    Look a field up in a flattened document.

    Falls back to walking the raw document for object-valued paths, and from
    a mapping-only ``x.keyword`` sub-field to ``x``. Returns ``None`` when absent.
    """
    if field_path in flattened:
        return flattened[field_path]
    if raw_document is not None:
        value = _walk(raw_document, field_path)
        if value is not _MISSING:
            return value
    if field_path.endswith(KEYWORD_SUFFIX):
        return extract_value(flattened, field_path[:-len(KEYWORD_SUFFIX)], raw_document)
    return None


def extract_key(flattened: Mapping[str, Any], field_path: str,
                raw_document: Optional[Mapping[str, Any]] = None,
                mode: KeyMode = 'typed') -> Optional[CanonicalKey]:
    """Extract and canonicalize a join key; ``None`` means the record is not joinable."""
    return canonicalize(extract_value(flattened, field_path, raw_document), mode)
