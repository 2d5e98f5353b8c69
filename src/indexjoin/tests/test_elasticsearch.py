"""Unit tests for the Elasticsearch backend with a mocked HTTP session."""
import pytest
import requests
from unittest.mock import MagicMock

from indexjoin.exceptions import IndexAccessDeniedError, SearchBackendError
from indexjoin.search.elasticsearch import ElasticsearchBackend
from indexjoin.settings import EngineSettings


def make_response(status_code=200, payload=None, text=''):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload if payload is not None else {}
    resp.text = text
    return resp


def make_backend(response=None, **settings_kwargs):
    session = MagicMock()
    session.request.return_value = response or make_response()
    settings = EngineSettings(_env_file=None, es_host='http://es:9200/', **settings_kwargs)
    return ElasticsearchBackend(settings, session=session), session


class TestSearch:
    """Test bounded searches."""

    def test_search_request(self):
        payload = {'took': 3, 'hits': {'hits': [{'_source': {'id': 1}}, {'_source': {'id': 2}}]}}
        backend, session = make_backend(make_response(payload=payload))

        docs = backend.search('orders', {'term': {'sku': 'p1'}}, 50)

        assert docs == [{'id': 1}, {'id': 2}]
        method, url = session.request.call_args[0]
        assert (method, url) == ('POST', 'http://es:9200/orders/_search')
        body = session.request.call_args[1]['json']
        assert body == {'query': {'term': {'sku': 'p1'}}, 'size': 50, '_source': True}

    def test_error_response(self):
        payload = {'error': {'type': 'index_not_found_exception', 'reason': 'no such index [ghost]'}}
        backend, _ = make_backend(make_response(404, payload))
        with pytest.raises(SearchBackendError) as exc_info:
            backend.search('ghost', {'match_all': {}}, 10)
        assert exc_info.value.status_code == 404
        assert 'no such index' in exc_info.value.message

    def test_connection_error(self):
        backend, session = make_backend()
        session.request.side_effect = requests.exceptions.ConnectionError('refused')
        with pytest.raises(SearchBackendError) as exc_info:
            backend.search('orders', {'match_all': {}}, 10)
        assert 'unreachable' in exc_info.value.message

    def test_malformed_json(self):
        resp = make_response()
        resp.json.side_effect = ValueError('not json')
        backend, _ = make_backend(resp)
        with pytest.raises(SearchBackendError):
            backend.search('orders', {'match_all': {}}, 10)

    def test_allowed_indices_checked_before_request(self):
        backend, session = make_backend(es_allowed_indices=['customers'])
        with pytest.raises(IndexAccessDeniedError):
            backend.search('orders', {'match_all': {}}, 10)
        session.request.assert_not_called()


class TestAuth:
    """Test credential handling."""

    def test_api_key_header(self):
        backend, session = make_backend(make_response(payload={'hits': {'hits': []}}),
                                        es_api_key='secret', es_username='u', es_password='p')
        backend.search('orders', {'match_all': {}}, 1)
        kwargs = session.request.call_args[1]
        assert kwargs['headers']['Authorization'] == 'ApiKey secret'
        assert kwargs['auth'] is None

    def test_basic_auth(self):
        backend, session = make_backend(make_response(payload={'hits': {'hits': []}}),
                                        es_username='u', es_password='p')
        backend.search('orders', {'match_all': {}}, 1)
        kwargs = session.request.call_args[1]
        assert kwargs['auth'] == ('u', 'p')
        assert 'Authorization' not in kwargs['headers']

    def test_timeout_passed(self):
        backend, session = make_backend(make_response(payload={}), es_request_timeout=5)
        backend.search('orders', {'match_all': {}}, 1)
        assert session.request.call_args[1]['timeout'] == 5


class TestMetadata:
    """Test mapping and document lookups."""

    def test_get_fields(self):
        mapping = {'orders': {'mappings': {'properties': {
            'sku': {'type': 'text', 'fields': {'keyword': {'type': 'keyword'}}},
            'customer': {'properties': {'id': {'type': 'long'}}},
        }}}}
        backend, session = make_backend(make_response(payload=mapping))
        assert backend.get_fields('orders') == ['customer.id', 'sku', 'sku.keyword']
        assert session.request.call_args[0] == ('GET', 'http://es:9200/orders/_mapping')

    def test_get_document(self):
        backend, _ = make_backend(make_response(payload={'found': True, '_source': {'name': 'q'}}))
        assert backend.get_document('saved_queries', 'q1') == {'name': 'q'}

    def test_get_missing_document(self):
        backend, _ = make_backend(make_response(404, {'found': False}))
        assert backend.get_document('saved_queries', 'nope') is None

    def test_ping(self):
        backend, session = make_backend(make_response(payload={'version': {'number': '8.0'}}))
        assert backend.ping() is True
        session.request.side_effect = requests.exceptions.ConnectionError('down')
        assert backend.ping() is False
