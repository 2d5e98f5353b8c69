"""Unit tests for indexjoin configuration models and the YAML loader."""
import pytest
import tempfile
import os
import yaml
from pydantic import ValidationError

from indexjoin.config import (
    ConsolidatedFieldSpec, JoinCondition, JoinConfiguration, JoinSource, PreviewRequest, load_config_from_file,
)
from indexjoin.settings import EngineSettings


class TestJoinSource:
    """Test join source parsing."""

    def test_reference_defaults_to_id(self):
        """Test that a bare index source reuses its id as index name."""
        source = JoinSource.model_validate({'id': 'orders'})
        assert source.kind == 'index'
        assert source.reference == 'orders'

    def test_stored_query_source(self):
        source = JoinSource.model_validate({
            'id': 'eu', 'kind': 'storedQuery', 'reference': 'eu-customers',
            'scopingQuery': {'term': {'active': True}},
        })
        assert source.kind == 'storedQuery'
        assert source.scoping_query == {'term': {'active': True}}

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            JoinSource.model_validate({'id': 'x', 'kind': 'table', 'reference': 'x'})


class TestJoinCondition:
    """Test join condition parsing."""

    def test_camel_case_payload(self):
        cond = JoinCondition.model_validate({
            'leftSourceId': 'a', 'leftField': 'id', 'rightSourceId': 'b', 'rightField': 'a_id',
        })
        assert cond.join_type == 'inner'
        assert cond.sources() == frozenset({'a', 'b'})

    def test_legacy_index_shape(self):
        """Test that {leftIndex, rightIndex, joinField} payloads are accepted."""
        cond = JoinCondition.model_validate({
            'leftIndex': 'customers', 'rightIndex': 'orders',
            'joinField': {'left': 'id', 'right': 'customer_id'}, 'joinType': 'full',
        })
        assert cond.left_source_id == 'customers'
        assert cond.right_source_id == 'orders'
        assert cond.left_field == 'id'
        assert cond.right_field == 'customer_id'
        assert cond.join_type == 'full'

    def test_invalid_join_type(self):
        with pytest.raises(ValidationError) as exc_info:
            JoinCondition.model_validate({
                'leftSourceId': 'a', 'leftField': 'id', 'rightSourceId': 'b', 'rightField': 'id',
                'joinType': 'cross',
            })
        assert 'join_type' in str(exc_info.value) or 'joinType' in str(exc_info.value)

    def test_empty_field_rejected(self):
        with pytest.raises(ValidationError):
            JoinCondition(left_source_id='a', left_field='', right_source_id='b', right_field='id')


class TestJoinConfiguration:
    """Test the top-level join configuration model."""

    def test_defaults(self, two_way_config):
        assert two_way_config.from_ == 0
        assert two_way_config.size == 100
        assert two_way_config.per_source_fetch_limit == 1000
        assert two_way_config.include_join_metadata is False

    def test_ids_assigned(self, two_way_config):
        assert two_way_config.conditions[0].id == 'join_1'
        assert [f.id for f in two_way_config.consolidated_fields] == ['field_1', 'field_2']

    def test_from_alias(self):
        cfg = JoinConfiguration.model_validate({'from': 20, 'size': 10})
        assert cfg.from_ == 20
        assert cfg.model_dump(by_alias=True)['from'] == 20

    def test_joins_key_accepted(self):
        """Test that the HTTP 'joins' list is read as conditions."""
        cfg = JoinConfiguration.model_validate({
            'joins': [{'leftIndex': 'a', 'rightIndex': 'b', 'joinField': {'left': 'id', 'right': 'id'}}],
        })
        assert len(cfg.conditions) == 1

    def test_implicit_sources_derived(self):
        cfg = JoinConfiguration.model_validate({
            'joins': [{'leftIndex': 'a', 'rightIndex': 'b', 'joinField': {'left': 'id', 'right': 'id'}}],
        })
        assert [s.id for s in cfg.sources] == ['a', 'b']
        assert all(s.kind == 'index' and s.reference == s.id for s in cfg.sources)

    def test_size_bounds(self):
        with pytest.raises(ValidationError):
            JoinConfiguration.model_validate({'size': 0})
        with pytest.raises(ValidationError):
            JoinConfiguration.model_validate({'size': 1001})
        with pytest.raises(ValidationError):
            JoinConfiguration.model_validate({'from': -1})

    def test_alias_default_and_include(self):
        spec = ConsolidatedFieldSpec(source_id='orders', source_field='amount')
        assert spec.alias == 'orders_amount'
        cfg = JoinConfiguration(consolidated_fields=[
            spec, ConsolidatedFieldSpec(source_id='orders', source_field='sku', include=False),
        ])
        assert [f.alias for f in cfg.included_fields] == ['orders_amount']

    def test_source_lookup(self, two_way_config):
        assert two_way_config.source('orders').reference == 'orders'
        assert two_way_config.source('missing') is None


class TestPreviewRequest:
    """Test preview request construction."""

    def test_for_indices(self):
        req = PreviewRequest.for_indices('customers', 'orders', 'id', 'customer_id')
        assert req.left_source.id == 'customers'
        assert req.right_source.reference == 'orders'
        assert req.join_type == 'full'
        assert req.sample_size is None

    def test_same_index_gets_distinct_ids(self):
        req = PreviewRequest.for_indices('people', 'people', 'id', 'manager_id', join_type='inner')
        assert (req.left_source.id, req.right_source.id) == ('left', 'right')
        assert req.left_source.reference == req.right_source.reference == 'people'

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValidationError):
            PreviewRequest(left_source=JoinSource(id='a'), right_source=JoinSource(id='a'),
                           left_field='id', right_field='id')


class TestLoadConfigFromFile:
    """Test YAML configuration loading."""

    def _write(self, data) -> str:
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            yaml.dump(data, f)
            return f.name

    def test_load_valid_config(self):
        """Test loading a snake_case YAML configuration."""
        path = self._write({
            'sources': [{'id': 'customers'}, {'id': 'orders'}],
            'conditions': [{
                'left_source_id': 'customers', 'left_field': 'id',
                'right_source_id': 'orders', 'right_field': 'customer_id',
                'join_type': 'left',
            }],
            'consolidated_fields': [{'source_id': 'customers', 'source_field': 'name'}],
            'size': 10,
        })
        try:
            cfg = load_config_from_file(path)
            assert cfg.conditions[0].join_type == 'left'
            assert cfg.consolidated_fields[0].alias == 'customers_name'
            assert cfg.size == 10
        finally:
            os.unlink(path)

    def test_join_section(self):
        """Test that the configuration may live under a top-level 'join' key."""
        path = self._write({'join': {'joins': [
            {'leftIndex': 'a', 'rightIndex': 'b', 'joinField': {'left': 'id', 'right': 'a_id'}},
        ]}})
        try:
            cfg = load_config_from_file(path)
            assert cfg.conditions[0].right_field == 'a_id'
        finally:
            os.unlink(path)

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_config_from_file('does-not-exist.yaml')

    def test_invalid_config(self):
        path = self._write({'size': 'many'})
        try:
            with pytest.raises(ValidationError):
                load_config_from_file(path)
        finally:
            os.unlink(path)


class TestEngineSettings:
    """Test environment parsing of runtime settings."""

    def test_comma_separated_lists(self, monkeypatch):
        monkeypatch.setenv('INDEXJOIN_ES_ALLOWED_INDICES', 'customers, orders-*')
        monkeypatch.setenv('INDEXJOIN_ALLOW_ORIGINS', 'http://a.test,http://b.test')
        settings = EngineSettings(_env_file=None)
        assert settings.es_allowed_indices == ['customers', 'orders-*']
        assert settings.allow_origins == ['http://a.test', 'http://b.test']

    def test_json_lists(self, monkeypatch):
        monkeypatch.setenv('INDEXJOIN_ES_ALLOWED_INDICES', '["customers", "orders"]')
        assert EngineSettings(_env_file=None).es_allowed_indices == ['customers', 'orders']

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv('INDEXJOIN_ES_ALLOWED_INDICES', raising=False)
        settings = EngineSettings(_env_file=None)
        assert settings.es_allowed_indices == []
        assert settings.key_mode == 'typed'
