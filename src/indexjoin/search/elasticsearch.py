"""Elasticsearch REST backend built on requests."""
import os
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import requests
from loguru import logger

from indexjoin.exceptions import SearchBackendError
from indexjoin.search.backend import MATCH_ALL, check_index_access
from indexjoin.search.mapping import extract_fields_from_mapping
from indexjoin.settings import EngineSettings


class ElasticsearchBackend:
    """
    Search backend talking to an Elasticsearch-compatible cluster over HTTP.

    Every request is checked against the configured index allow-list before
    it leaves the process. No retries are performed here.
    """

    def __init__(self, settings: EngineSettings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.base_url = settings.es_host.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = settings.es_request_timeout
        self.headers = self._build_headers()
        self.auth = self._build_auth()
        self.verify: Union[bool, str] = True
        if settings.es_ca_cert and os.path.exists(settings.es_ca_cert):
            self.verify = settings.es_ca_cert

        logger.info(f"Elasticsearch backend configured: host={self.base_url}, "
                    f"auth={'api_key' if settings.es_api_key else 'basic' if self.auth else 'none'}, "
                    f"allowed_indices={settings.es_allowed_indices or 'all'}")

    def _build_headers(self) -> Dict[str, str]:
        headers = {'Accept': 'application/json', 'Content-Type': 'application/json'}
        if self.settings.es_api_key:
            headers['Authorization'] = f"ApiKey {self.settings.es_api_key}"
        return headers

    def _build_auth(self) -> Optional[Tuple[str, str]]:
        if self.settings.es_api_key:
            return None
        if self.settings.es_username and self.settings.es_password:
            return (self.settings.es_username, self.settings.es_password)
        return None

    def _request(self, method: str, path: str, index: Optional[str] = None,
                 json_body: Optional[Dict[str, Any]] = None,
                 allow_not_found: bool = False) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            resp = self.session.request(
                method, url, json=json_body, headers=self.headers, auth=self.auth,
                timeout=self.timeout, verify=self.verify,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Elasticsearch request failed: {method} {url}: {e}")
            raise SearchBackendError(f"Search engine unreachable: {e}", index=index) from e

        if allow_not_found and resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            reason = resp.text[:500]
            try:
                error = resp.json().get('error')
                if isinstance(error, dict):
                    reason = error.get('reason') or error.get('type') or reason
                elif error:
                    reason = str(error)
            except ValueError:
                pass
            logger.error(f"Elasticsearch returned {resp.status_code} for {method} {url}: {reason}")
            raise SearchBackendError(f"Search engine error: {reason}", index=index, status_code=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise SearchBackendError(f"Malformed search engine response: {e}", index=index) from e

    def search(self, index: str, query: Mapping[str, Any], limit: int) -> List[Dict[str, Any]]:
        """Run one bounded search and return the hits' ``_source`` documents."""
        operation_id = uuid.uuid4().hex[:9]
        check_index_access(index, self.settings.es_allowed_indices)

        start = time.perf_counter()
        logger.info(f"[ES-SEARCH-{operation_id}] Searching {index} (size={limit})")
        body = {'query': dict(query or MATCH_ALL), 'size': limit, '_source': True}
        response = self._request('POST', f"{index}/_search", index=index, json_body=body) or {}

        hits = response.get('hits', {}).get('hits', [])
        documents = [hit.get('_source', {}) for hit in hits]
        elapsed = (time.perf_counter() - start) * 1000
        logger.info(f"[ES-SEARCH-{operation_id}] {len(documents)} documents from {index} "
                    f"in {elapsed:.0f}ms (es took {response.get('took', '?')}ms)")
        return documents

    def get_mapping(self, index: str) -> Dict[str, Any]:
        check_index_access(index, self.settings.es_allowed_indices)
        return self._request('GET', f"{index}/_mapping", index=index) or {}

    def get_fields(self, index: str) -> List[str]:
        mapping = self.get_mapping(index)
        paths: Dict[str, None] = {}
        for index_mapping in mapping.values():
            properties = index_mapping.get('mappings', {}).get('properties', {})
            for field in extract_fields_from_mapping(properties):
                paths.setdefault(field.full_path)
        return sorted(paths)

    def get_document(self, index: str, doc_id: str) -> Optional[Dict[str, Any]]:
        check_index_access(index, self.settings.es_allowed_indices)
        response = self._request('GET', f"{index}/_doc/{doc_id}", index=index, allow_not_found=True)
        if not response or not response.get('found', True):
            return None
        return response.get('_source')

    def ping(self) -> bool:
        try:
            self._request('GET', '/')
            return True
        except SearchBackendError:
            return False
