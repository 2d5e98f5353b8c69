"""Join configuration models and YAML loader for indexjoin."""
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel
from typing import List, Dict, Any, Optional, Literal
import yaml
from loguru import logger
import os

JoinType = Literal['inner', 'left', 'right', 'full']
SourceKind = Literal['index', 'storedQuery']


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python and YAML."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JoinSource(_WireModel):
    """Where records for one side of a join come from."""
    id: str = Field(min_length=1)
    kind: SourceKind = 'index'
    reference: str = Field(min_length=1)     # index name or stored query id
    scoping_query: Optional[Dict[str, Any]] = None
    target_index: Optional[str] = None       # inline target for stored queries

    @model_validator(mode='before')
    @classmethod
    def _default_reference(cls, data: Any) -> Any:
        # A bare index source may omit the reference and reuse its id
        if isinstance(data, dict) and not data.get('reference') and data.get('id'):
            data = {**data, 'reference': data['id']}
        return data


class JoinCondition(_WireModel):
    """One edge of the join graph."""
    id: Optional[str] = None
    left_source_id: str = Field(min_length=1)
    left_field: str = Field(min_length=1)
    right_source_id: str = Field(min_length=1)
    right_field: str = Field(min_length=1)
    join_type: JoinType = 'inner'

    @model_validator(mode='before')
    @classmethod
    def _accept_legacy_shape(cls, data: Any) -> Any:
        """Accept {leftIndex, rightIndex, joinField: {left, right}} payloads."""
        if not isinstance(data, dict) or 'leftIndex' not in data:
            return data
        join_field = data.get('joinField') or {}
        normalized = {k: v for k, v in data.items() if k not in ('leftIndex', 'rightIndex', 'joinField')}
        normalized.setdefault('leftSourceId', data.get('leftIndex'))
        normalized.setdefault('rightSourceId', data.get('rightIndex'))
        normalized.setdefault('leftField', join_field.get('left'))
        normalized.setdefault('rightField', join_field.get('right'))
        return normalized

    def sources(self) -> frozenset:
        return frozenset((self.left_source_id, self.right_source_id))


class ConsolidatedFieldSpec(_WireModel):
    """One output column: a (source, field) pair written under an alias."""
    id: Optional[str] = None
    source_id: str = Field(min_length=1)
    source_field: str = Field(min_length=1)
    alias: Optional[str] = None
    include: bool = True

    @model_validator(mode='after')
    def _default_alias(self):
        if not self.alias:
            self.alias = f"{self.source_id}_{self.source_field}"
        return self


class JoinConfiguration(_WireModel):
    sources: List[JoinSource] = Field(default_factory=list)
    conditions: List[JoinCondition] = Field(default_factory=list)
    consolidated_fields: List[ConsolidatedFieldSpec] = Field(default_factory=list)
    from_: int = Field(default=0, ge=0, alias='from')
    size: int = Field(default=100, ge=1, le=1000)
    per_source_fetch_limit: int = Field(default=1000, ge=1, le=1000)
    include_join_metadata: bool = False

    @model_validator(mode='before')
    @classmethod
    def _accept_joins_key(cls, data: Any) -> Any:
        # The HTTP payload names the condition list "joins"
        if isinstance(data, dict) and 'joins' in data and 'conditions' not in data:
            data = {**data, 'conditions': data['joins']}
            data.pop('joins')
        return data

    @model_validator(mode='after')
    def _derive_implicit_sources(self):
        """Conditions naming sources that are not declared join raw indices."""
        if not self.sources:
            seen: List[str] = []
            for cond in self.conditions:
                for source_id in (cond.left_source_id, cond.right_source_id):
                    if source_id not in seen:
                        seen.append(source_id)
            self.sources = [JoinSource(id=s, kind='index', reference=s) for s in seen]
        return self

    @model_validator(mode='after')
    def _assign_ids(self):
        for i, cond in enumerate(self.conditions, start=1):
            if not cond.id:
                cond.id = f"join_{i}"
        for i, spec in enumerate(self.consolidated_fields, start=1):
            if not spec.id:
                spec.id = f"field_{i}"
        return self

    def source(self, source_id: str) -> Optional[JoinSource]:
        return next((s for s in self.sources if s.id == source_id), None)

    @property
    def included_fields(self) -> List[ConsolidatedFieldSpec]:
        return [f for f in self.consolidated_fields if f.include]


class PreviewRequest(_WireModel):
    """Single-pair preview input."""
    left_source: JoinSource
    right_source: JoinSource
    left_field: str = Field(min_length=1)
    right_field: str = Field(min_length=1)
    join_type: JoinType = 'full'
    fetch_limit: Optional[int] = Field(default=None, ge=1, le=1000)
    sample_size: Optional[int] = Field(default=None, ge=1, le=1000)
    top_keys: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode='after')
    def _distinct_source_ids(self):
        if self.left_source.id == self.right_source.id:
            raise ValueError(f"Preview sources must have distinct ids, got '{self.left_source.id}' twice")
        return self

    @classmethod
    def for_indices(cls, left_index: str, right_index: str, left_field: str, right_field: str,
                    **kwargs: Any) -> 'PreviewRequest':
        """Build a preview over two raw indices."""
        left_id = 'left' if left_index == right_index else left_index
        right_id = 'right' if left_index == right_index else right_index
        return cls(
            left_source=JoinSource(id=left_id, kind='index', reference=left_index),
            right_source=JoinSource(id=right_id, kind='index', reference=right_index),
            left_field=left_field,
            right_field=right_field,
            **{k: v for k, v in kwargs.items() if v is not None},
        )


def load_config_from_file(path: str) -> JoinConfiguration:
    """Load and parse a join configuration from a YAML file."""
    if not os.path.exists(path):
        logger.error(f"Config file not found: {path}")
        raise FileNotFoundError(path)

    with open(path, 'r', encoding='utf-8') as f:
        raw = yaml.safe_load(f) or {}

    # Allow the configuration to live under a top-level 'join' section
    if isinstance(raw, dict) and 'join' in raw and isinstance(raw['join'], dict):
        raw = raw['join']

    try:
        cfg = JoinConfiguration.model_validate(raw)
    except ValidationError as e:
        logger.error("Join configuration parsing failed: {}".format(e))
        raise

    logger.info(f"Join config parsed: {path}")
    logger.info(f"  Sources: {[s.id for s in cfg.sources]}")
    for cond in cfg.conditions:
        logger.info(f"  {cond.id}: {cond.left_source_id}.{cond.left_field} "
                    f"{cond.join_type.upper()} {cond.right_source_id}.{cond.right_field}")
    logger.info(f"  Output columns: {[f.alias for f in cfg.included_fields]}")
    logger.info(f"  Page: from={cfg.from_} size={cfg.size}, per-source limit={cfg.per_source_fetch_limit}")

    stored = [s.id for s in cfg.sources if s.kind == 'storedQuery']
    if stored:
        logger.info(f"  Stored-query sources: {stored}")

    return cfg
