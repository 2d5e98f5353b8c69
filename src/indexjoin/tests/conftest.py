"""Shared fixtures for indexjoin tests."""
import pytest

from indexjoin.config import JoinConfiguration
from indexjoin.join.engine import JoinEngine
from indexjoin.search.backend import InMemorySearchBackend
from indexjoin.settings import EngineSettings
from indexjoin.sources.resolver import InMemoryStoredQueryRepository, StoredQuery


@pytest.fixture
def shop_indices():
    return {
        'customers': [
            {'id': 1, 'name': 'Ada', 'address': {'region': 'eu', 'city': 'Paris'}},
            {'id': 2, 'name': 'Bo', 'address': {'region': 'us', 'city': 'Austin'}},
            {'id': 3, 'name': 'Cy', 'address': {'region': 'eu', 'city': 'Rome'}},
        ],
        'orders': [
            {'order_id': 'o1', 'customer_id': 1, 'sku': 'p1', 'amount': 10},
            {'order_id': 'o2', 'customer_id': 1, 'sku': 'p2', 'amount': 5},
            {'order_id': 'o3', 'customer_id': 4, 'sku': 'p1', 'amount': 7},
        ],
        'products': [
            {'sku': 'p1', 'title': 'Pen'},
            {'sku': 'p3', 'title': 'Ink'},
        ],
    }


@pytest.fixture
def backend(shop_indices):
    return InMemorySearchBackend(shop_indices)


@pytest.fixture
def stored_queries():
    repo = InMemoryStoredQueryRepository()
    repo.add(StoredQuery(id='eu-customers', name='EU customers', target_index='customers',
                         query={'term': {'address.region': 'eu'}}))
    return repo


@pytest.fixture
def settings():
    return EngineSettings(_env_file=None)


@pytest.fixture
def engine(backend, settings, stored_queries):
    return JoinEngine(backend, settings, stored_queries)


@pytest.fixture
def two_way_config():
    """customers LEFT JOIN orders on id = customer_id."""
    return JoinConfiguration.model_validate({
        'sources': [
            {'id': 'customers', 'kind': 'index', 'reference': 'customers'},
            {'id': 'orders', 'kind': 'index', 'reference': 'orders'},
        ],
        'conditions': [{
            'leftSourceId': 'customers', 'leftField': 'id',
            'rightSourceId': 'orders', 'rightField': 'customer_id',
            'joinType': 'left',
        }],
        'consolidatedFields': [
            {'sourceId': 'customers', 'sourceField': 'name', 'alias': 'customer'},
            {'sourceId': 'orders', 'sourceField': 'order_id', 'alias': 'order'},
        ],
    })
