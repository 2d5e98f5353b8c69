"""Field discovery from index mappings."""
from dataclasses import dataclass
from typing import Any, List, Mapping

from loguru import logger

NUMERIC_TYPES = {'integer', 'long', 'short', 'byte', 'double', 'float', 'half_float', 'scaled_float'}


@dataclass
class FieldInfo:
    name: str
    type: str
    full_path: str

    @property
    def is_keyword(self) -> bool:
        return self.type == 'keyword'

    @property
    def is_numeric(self) -> bool:
        return self.type in NUMERIC_TYPES


def extract_fields_from_mapping(properties: Mapping[str, Any], path: str = '') -> List[FieldInfo]:
    """
    Walk an Elasticsearch ``properties`` block into a flat field list.

    Multi-field variants (``title.keyword``) are listed after their parent field;
    object and nested fields contribute their sub-properties.
    """
    fields: List[FieldInfo] = []
    for field_name, field_def in (properties or {}).items():
        full_path = f"{path}.{field_name}" if path else field_name
        if 'type' in field_def and field_def['type'] not in ('object', 'nested'):
            fields.append(FieldInfo(name=field_name, type=field_def['type'], full_path=full_path))
            for variant_name, variant_def in (field_def.get('fields') or {}).items():
                if 'type' in variant_def:
                    fields.append(FieldInfo(
                        name=f"{field_name}.{variant_name}",
                        type=variant_def['type'],
                        full_path=f"{full_path}.{variant_name}",
                    ))
        if 'properties' in field_def:
            fields.extend(extract_fields_from_mapping(field_def['properties'], full_path))
    return fields


class FieldMappingService:
    """Lists the field paths of a join source. Feeds configuration UIs and the strict field check."""

    def __init__(self, backend, resolver):
        self.backend = backend
        self.resolver = resolver

    def get_fields(self, source) -> List[str]:
        resolved = self.resolver.resolve(source)
        fields = list(self.backend.get_fields(resolved.index))
        logger.debug(f"Fields for {resolved.index}: {len(fields)}")
        return fields
