"""Tests for the indexjoin command-line interface."""
import json
import pytest
import yaml
import pandas as pd
from typer.testing import CliRunner

from indexjoin.cli import app

runner = CliRunner()


@pytest.fixture
def data_dir(tmp_path, shop_indices):
    directory = tmp_path / 'data'
    directory.mkdir()
    for name, docs in shop_indices.items():
        (directory / f"{name}.json").write_text(json.dumps(docs))
    return directory


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / 'join.yaml'
    path.write_text(yaml.dump({'join': {
        'sources': [{'id': 'customers'}, {'id': 'orders'}],
        'conditions': [{
            'left_source_id': 'customers', 'left_field': 'id',
            'right_source_id': 'orders', 'right_field': 'customer_id',
            'join_type': 'left',
        }],
        'consolidated_fields': [
            {'source_id': 'customers', 'source_field': 'name', 'alias': 'customer'},
            {'source_id': 'orders', 'source_field': 'order_id', 'alias': 'order'},
        ],
    }}))
    return path


class TestExecuteCommand:
    """Test the execute command."""

    def test_execute_to_csv(self, data_dir, config_file, tmp_path):
        output = tmp_path / 'rows.csv'
        result = runner.invoke(app, ['execute', '--config', str(config_file), '--data-dir', str(data_dir),
                                     '--output', str(output), '--log-level', 'ERROR'])
        assert result.exit_code == 0, result.output
        assert '✅ Join completed' in result.output
        frame = pd.read_csv(output)
        assert list(frame.columns) == ['customer', 'order']
        assert frame['customer'].tolist() == ['Ada', 'Ada', 'Bo', 'Cy']

    def test_execute_page_and_summary(self, data_dir, config_file, tmp_path):
        summary = tmp_path / 'summary.json'
        result = runner.invoke(app, ['execute', '-c', str(config_file), '-d', str(data_dir),
                                     '--from', '2', '--size', '1', '--summary-output', str(summary),
                                     '-l', 'ERROR'])
        assert result.exit_code == 0, result.output
        assert 'Rows 2-3 of 4' in result.output
        saved = json.loads(summary.read_text())
        assert saved['summary']['matchedCount'] == 2
        assert 'rows' not in saved

    def test_missing_config(self, data_dir, tmp_path):
        result = runner.invoke(app, ['execute', '-c', str(tmp_path / 'nope.yaml'), '-d', str(data_dir)])
        assert result.exit_code == 2

    def test_invalid_configuration(self, data_dir, tmp_path):
        path = tmp_path / 'bad.yaml'
        path.write_text(yaml.dump({'joins': [
            {'leftIndex': 'customers', 'rightIndex': 'customers', 'joinField': {'left': 'id', 'right': 'id'}},
        ], 'consolidatedFields': [{'sourceId': 'customers', 'sourceField': 'id'}]}))
        result = runner.invoke(app, ['execute', '-c', str(path), '-d', str(data_dir), '-l', 'ERROR'])
        assert result.exit_code == 1
        assert 'to itself' in result.output

    def test_fetch_failure(self, data_dir, tmp_path):
        path = tmp_path / 'ghost.yaml'
        path.write_text(yaml.dump({'joins': [
            {'leftIndex': 'customers', 'rightIndex': 'ghost', 'joinField': {'left': 'id', 'right': 'id'}},
        ], 'consolidatedFields': [{'sourceId': 'customers', 'sourceField': 'id'}]}))
        result = runner.invoke(app, ['execute', '-c', str(path), '-d', str(data_dir), '-l', 'ERROR'])
        assert result.exit_code == 3


class TestOtherCommands:
    """Test preview, validate, fields and info."""

    def test_preview(self, data_dir):
        result = runner.invoke(app, ['preview', '--left-index', 'customers', '--right-index', 'orders',
                                     '--left-field', 'id', '--right-field', 'customer_id',
                                     '--sample-size', '2', '-d', str(data_dir)])
        assert result.exit_code == 0, result.output
        assert 'Matched: 2, left only: 2, right only: 1' in result.output
        assert 'Showing 2 of 5 tuples' in result.output

    def test_preview_bad_join_type(self, data_dir):
        result = runner.invoke(app, ['preview', '--left-index', 'a', '--right-index', 'b',
                                     '--left-field', 'id', '--right-field', 'id', '-t', 'cross',
                                     '-d', str(data_dir)])
        assert result.exit_code == 1

    def test_validate(self, config_file):
        result = runner.invoke(app, ['validate', '--config', str(config_file)])
        assert result.exit_code == 0, result.output
        assert 'Stage 1: customers.id LEFT orders.customer_id' in result.output

    def test_validate_check_fields(self, config_file, data_dir, tmp_path):
        bad = yaml.safe_load(config_file.read_text())
        bad['join']['consolidated_fields'][0]['source_field'] = 'nme'
        path = tmp_path / 'bad.yaml'
        path.write_text(yaml.dump(bad))
        result = runner.invoke(app, ['validate', '-c', str(path), '-d', str(data_dir), '--check-fields'])
        assert result.exit_code == 1
        assert "Unknown field 'nme'" in result.output

    def test_fields(self, data_dir):
        result = runner.invoke(app, ['fields', 'customers', '-d', str(data_dir)])
        assert result.exit_code == 0
        assert 'address.city' in result.output

    def test_fields_unknown_index(self, data_dir):
        result = runner.invoke(app, ['fields', 'ghost', '-d', str(data_dir)])
        assert result.exit_code == 3

    def test_info(self):
        result = runner.invoke(app, ['info'])
        assert result.exit_code == 0
        assert 'indexjoin' in result.output
