"""
Benchling REST API v2 client.

Environment (see config.settings):
  BENCHLING_API_URL      e.g. https://esox.benchling.com/api/v2
  BENCHLING_API_KEY      sent as HTTP basic auth user, blank password
  BENCHLING_REQUEST_TIMEOUT
"""

import logging

import requests
from django.conf import settings

from ..exceptions import ExternalSystemError
from .base import BaseLabClient
from .errors import classify_external_error
from .types import BenchlingEntity, TaskStatus

logger = logging.getLogger(__name__)


class BenchlingClient(BaseLabClient):

    PAGE_SIZE = 100

    def __init__(self, api_url=None, api_key=None, timeout=None, session=None):
        self.api_url = (api_url or settings.BENCHLING_API_URL).rstrip('/')
        self.api_key = api_key if api_key is not None else settings.BENCHLING_API_KEY
        self.timeout = timeout if timeout is not None else settings.BENCHLING_REQUEST_TIMEOUT
        self.session = session or requests.Session()
        self.session.auth = (self.api_key, '')
        self.session.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        })

    def _request(self, method, path, **kwargs):
        if not self.api_key:
            raise ExternalSystemError('BENCHLING_API_KEY is not set.', code='AUTH_ERROR')

        url = f'{self.api_url}{path}'
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.RequestException as exc:
            error = classify_external_error(exc)
            logger.warning('Benchling %s %s failed: %s (%s)', method, path, error.code, exc)
            raise error from exc

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            logger.warning('Benchling %s %s returned a non-JSON body', method, path)
            raise ExternalSystemError(
                f'Benchling returned an unreadable response for {method} {path}.',
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise ExternalSystemError(
                f'Benchling returned an unexpected response for {method} {path}.',
                status_code=response.status_code,
            )
        return data

    @staticmethod
    def _value(data, key, path):
        if not isinstance(data, dict) or not data.get(key):
            raise ExternalSystemError(f'Benchling response for {path} has no {key!r}.')
        return data[key]

    def _entity(self, data, path):
        self._value(data, 'id', path)
        return BenchlingEntity.from_api(data)

    # ── folders / entities ────────────────────────────────────────────────

    def create_folder(self, name, parent_folder_id):
        data = self._request('POST', '/folders', json={'name': name, 'parentFolderId': parent_folder_id})
        return self._value(data, 'id', '/folders')

    def create_custom_entity(self, entity):
        data = self._request('POST', '/custom-entities', json=entity)
        return self._value(data, 'id', '/custom-entities')

    def create_entity(self, payload):
        return self._entity(self._request('POST', '/custom-entities', json=payload), '/custom-entities')

    def get_entity(self, entity_id):
        try:
            data = self._request('GET', f'/custom-entities/{entity_id}')
        except ExternalSystemError as exc:
            if exc.status_code == 404:
                return None
            raise
        return self._entity(data, f'/custom-entities/{entity_id}')

    def update_entity(self, entity_id, fields):
        data = self._request('PATCH', f'/custom-entities/{entity_id}', json={'fields': fields})
        return self._entity(data, f'/custom-entities/{entity_id}')

    def delete_entity(self, entity_id):
        self._request('DELETE', f'/custom-entities/{entity_id}')

    def list_entities(self, schema_id, registry_id=None, prefix=None):
        entities = []
        next_token = None

        while True:
            params = {'schemaId': schema_id, 'pageSize': self.PAGE_SIZE}
            if registry_id:
                params['registryId'] = registry_id
            if next_token:
                params['nextToken'] = next_token

            data = self._request('GET', '/custom-entities', params=params)
            for raw in data.get('customEntities') or []:
                entity = self._entity(raw, '/custom-entities')
                if prefix and not entity.entity_registry_id.startswith(prefix):
                    continue
                entities.append(entity)

            next_token = data.get('nextToken') or data.get('nextCursor')
            if not next_token:
                break

        logger.info('Listed %d Benchling entities for schema %s', len(entities), schema_id)
        return entities

    # ── long-running tasks ────────────────────────────────────────────────

    def create_entities_async(self, entities):
        data = self._request('POST', '/custom-entities:bulk-create', json={'customEntities': entities})
        return self._value(data, 'taskId', '/custom-entities:bulk-create')

    def update_entities_async(self, entities):
        data = self._request('POST', '/custom-entities:bulk-update', json={'customEntities': entities})
        return self._value(data, 'taskId', '/custom-entities:bulk-update')

    def get_task_status(self, task_id):
        return TaskStatus.from_api(task_id, self._request('GET', f'/tasks/{task_id}'))
