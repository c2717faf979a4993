"""
Shared fixtures for all tests.

factory-boy factories and the in-memory Benchling fake live here so both
unit/ and integration/ can import them.
"""
import itertools
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import factory
import jwt
import pytest
from django.conf import settings
from django.test import Client

from labsync.authentication import Caller
from labsync.benchling.base import BaseLabClient
from labsync.benchling.types import BenchlingEntity, TaskStatus
from labsync.exceptions import ExternalSystemError
from labsync.models import Order, SyncedSample, SyncQueueEntry, UserProfile


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class UserProfileFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = UserProfile

    uid = factory.Sequence(lambda n: f'user-{n}')
    email = factory.LazyAttribute(lambda o: f'{o.uid}@example.com')
    is_admin = False


class OrderFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Order

    user_id = 'customer-1'
    status = 'reviewing'
    title = 'Gill health screen'
    customer = factory.LazyFunction(lambda: {'email': 'farm@example.com', 'name': 'Salmon Farms Ltd'})
    requested_services = factory.LazyFunction(lambda: [
        {'service': 'Metagenomics', 'sampleType': 'Gill swab', 'numberOfSamples': 2},
    ])
    questionnaire_answers = factory.LazyFunction(lambda: {
        'speciesOfInterest': [{'name': 'Atlantic salmon', 'value': True}],
    })


class SyncedSampleFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = SyncedSample

    benchling_id = factory.Sequence(lambda n: f'bfi_{n:04d}')
    entity_registry_id = factory.Sequence(lambda n: f'EBM{1000 + n}')
    sample_id = factory.LazyAttribute(lambda o: o.entity_registry_id)
    client_name = 'Salmon Farms Ltd'
    sample_type = 'Gill swab'
    sample_format = 'RNAlater'
    sample_date = '2024-05-01'
    sample_status = 'collected'
    created_in = 'benchling'


class SyncQueueEntryFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = SyncQueueEntry

    operation = 'update'
    target_sample_id = factory.Sequence(lambda n: f'sample-{n}')
    benchling_id = factory.Sequence(lambda n: f'bfi_q{n}')
    status = 'pending'


def provisioned_order(**kwargs):
    """An approved order with two provisioned samples awaiting return."""
    defaults = {
        'status': 'approved',
        'task_ids': ['task_seed'],
        'ordered_samples': [
            {'name': 'EBM1', 'apiId': 'bfi_s1', 'service': 'Metagenomics'},
            {'name': 'EBM2', 'apiId': 'bfi_s2', 'service': 'Metagenomics'},
        ],
        'unsubmitted_samples': [
            {'name': 'EBM1', 'service': 'Metagenomics',
             'metadata': {'samplingDateTime': '2024-05-01T09:30', 'Water Temp': '11'}},
            {'name': 'EBM2', 'service': 'Metagenomics', 'metadata': {}},
        ],
    }
    defaults.update(kwargs)
    return OrderFactory(**defaults)


# ---------------------------------------------------------------------------
# Benchling fake
# ---------------------------------------------------------------------------

_SCHEMA_PREFIXES = {
    'ts_NJDS3UwU': 'EBM',
    'ts_wfTG1Txp': 'EBq',
    'ts_Jy2wFEft': 'EBGS',
}


class FakeLabClient(BaseLabClient):
    """
    In-memory Benchling.

    fail_on:      method names that raise ExternalSystemError
    task_status:  status given to every task created from now on
    """

    def __init__(self):
        self.calls = []
        self.tasks = {}
        self.entities = {}
        self.fail_on = set()
        self.task_status = 'SUCCEEDED'
        self._ids = itertools.count(1)

    def _call(self, name, *args):
        self.calls.append((name, args))
        if name in self.fail_on:
            raise ExternalSystemError('Benchling request failed with status 503.', code='UNKNOWN_ERROR',
                                      status_code=503)

    def calls_to(self, name):
        return [args for called, args in self.calls if called == name]

    def _new_task(self, response):
        task_id = f'task_{next(self._ids)}'
        self.tasks[task_id] = TaskStatus(task_id=task_id, status=self.task_status, response=response)
        return task_id

    def create_folder(self, name, parent_folder_id):
        self._call('create_folder', name, parent_folder_id)
        return f'lib_{name}'

    def create_custom_entity(self, entity):
        self._call('create_custom_entity', entity)
        return f'bfi_order_{next(self._ids)}'

    def create_entities_async(self, entities):
        self._call('create_entities_async', entities)
        created = []
        for entity in entities:
            n = next(self._ids)
            prefix = _SCHEMA_PREFIXES.get(entity['schemaId'], 'EBX')
            created.append({'id': f'bfi_{n}', 'entityRegistryId': f'{prefix}{n}', 'name': entity['name']})
        return self._new_task({'customEntities': created})

    def update_entities_async(self, entities):
        self._call('update_entities_async', entities)
        return self._new_task({'customEntities': [{'id': e['id']} for e in entities]})

    def get_task_status(self, task_id):
        self._call('get_task_status', task_id)
        return self.tasks[task_id]

    def list_entities(self, schema_id, registry_id=None, prefix=None):
        self._call('list_entities', schema_id, registry_id, prefix)
        return [
            e for e in self.entities.values()
            if e.schema_id == schema_id and (not prefix or e.entity_registry_id.startswith(prefix))
        ]

    def get_entity(self, entity_id):
        self._call('get_entity', entity_id)
        return self.entities.get(entity_id)

    def create_entity(self, payload):
        self._call('create_entity', payload)
        entity = BenchlingEntity(
            id=f'bfi_new_{next(self._ids)}',
            entity_registry_id=payload['name'],
            name=payload['name'],
            schema_id=payload['schemaId'],
            fields=payload['fields'],
        )
        self.entities[entity.id] = entity
        return entity

    def update_entity(self, entity_id, fields):
        self._call('update_entity', entity_id, fields)
        entity = self.entities.setdefault(entity_id, BenchlingEntity(id=entity_id))
        entity.fields = {**entity.fields, **fields}
        return entity

    def delete_entity(self, entity_id):
        self._call('delete_entity', entity_id)
        self.entities.pop(entity_id, None)

    def add_entity(self, registry_id, modified_at='2024-05-02T10:00:00Z', schema_id='ts_NJDS3UwU', **values):
        fields = {
            'Sample ID': {'value': values.get('sample_id', registry_id)},
            'Client Name': {'value': values.get('client_name', 'Salmon Farms Ltd')},
            'Sample Type': {'value': values.get('sample_type', 'Gill swab')},
            'Sample Format': {'value': values.get('sample_format', 'RNAlater')},
            'Sample Date': {'value': values.get('sample_date', '2024-05-01')},
            'Sample Status': {'value': values.get('sample_status', 'received')},
        }
        entity = BenchlingEntity(
            id=f'bfi_{registry_id.lower()}',
            entity_registry_id=registry_id,
            name=registry_id,
            schema_id=schema_id,
            fields=fields,
            created_at='2024-05-01T08:00:00Z',
            modified_at=modified_at,
        )
        self.entities[entity.id] = entity
        return entity


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------

def make_token(uid, expires_in=timedelta(hours=1), key=None, **claims):
    payload = {'sub': uid, 'exp': datetime.now(timezone.utc) + expires_in, **claims}
    return jwt.encode(payload, key or settings.AUTH_JWT_KEY, algorithm='HS256')


def auth_headers(uid):
    return {'HTTP_AUTHORIZATION': f'Bearer {make_token(uid)}'}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def benchling_settings(settings):
    settings.BENCHLING_API_KEY = 'test-key'
    settings.BENCHLING_TASK_TIMEOUT = 0
    settings.BENCHLING_TASK_POLL_INTERVAL = 0
    settings.BENCHLING_WEBHOOK_SECRET = ''
    return settings


@pytest.fixture
def fake_client():
    """A FakeLabClient returned by every get_lab_client() call."""
    client = FakeLabClient()
    with patch('labsync.services.get_lab_client', return_value=client), \
            patch('labsync.sync.get_lab_client', return_value=client):
        yield client


@pytest.fixture
def admin():
    return Caller(uid='admin-1', is_admin=True)


@pytest.fixture
def customer():
    return Caller(uid='customer-1', is_admin=False)


@pytest.fixture
def api_client():
    """Django test client for integration tests."""
    return Client()


@pytest.fixture
def admin_headers(db):
    UserProfileFactory(uid='admin-1', is_admin=True)
    return auth_headers('admin-1')


@pytest.fixture
def customer_headers(db):
    UserProfileFactory(uid='customer-1', is_admin=False)
    return auth_headers('customer-1')
