"""
Build Benchling entity payloads from local records, and read them back.
"""

import re

from django.conf import settings

# local SyncedSample field -> Benchling field name
SAMPLE_FIELD_NAMES = {
    'sample_id': 'Sample ID',
    'client_name': 'Client Name',
    'sample_type': 'Sample Type',
    'sample_format': 'Sample Format',
    'sample_date': 'Sample Date',
    'sample_status': 'Sample Status',
}

SAMPLED_AT_METADATA_KEY = 'samplingDateTime'


def extract_field_value(fields, name):
    field = fields.get(name)
    if field is None:
        return ''
    if isinstance(field, dict):
        value = field.get('value')
        return '' if value is None else str(value)
    return str(field)


def parse_benchling_fields(fields, present_only=False):
    """
    Benchling `fields` dict -> {local_field: str}.

    present_only skips fields absent from the payload instead of blanking them.
    """
    fields = fields or {}
    return {
        local: extract_field_value(fields, remote)
        for local, remote in SAMPLE_FIELD_NAMES.items()
        if not present_only or remote in fields
    }


def build_benchling_fields(sample):
    """SyncedSample (or a dict with the same keys) -> Benchling `fields` dict."""
    def get(name):
        value = sample.get(name) if isinstance(sample, dict) else getattr(sample, name, '')
        return value or ''

    return {remote: {'value': get(local)} for local, remote in SAMPLE_FIELD_NAMES.items()}


def build_sample_entity(sample, folder_id=''):
    """Create payload for a mirrored sample record."""
    return {
        'schemaId': settings.BENCHLING_SCHEMA_ID,
        'registryId': settings.BENCHLING_REGISTRY_ID,
        'name': sample.entity_registry_id,
        'folderId': folder_id,
        'fields': build_benchling_fields(sample),
    }


# ── order provisioning ─────────────────────────────────────────────────────

def _capitalized_words(key):
    return ' '.join(w[0].upper() + w[1:] for w in re.findall(r'[A-Za-z][a-z]*', key))


def _readable_answer(response):
    value = response.get('value')
    name = response.get('name', '')
    if value is True:
        return name
    if name == 'Other':
        return f"Other: [{', '.join(map(str, value))}]" if isinstance(value, list) else f'Other: {value}'
    return f'{name}: {value}'


def questionnaire_custom_fields(answers):
    """Questionnaire answers -> Benchling customFields, one field per question."""
    custom_fields = {}
    for key, responses in (answers or {}).items():
        kept = [r for r in responses or [] if r.get('value') is not None and r.get('value') is not False]
        custom_fields[_capitalized_words(key)] = {'value': ','.join(_readable_answer(r) for r in kept)}
    return custom_fields


def build_order_entity(order, folder_id):
    name = f'EB_CO{order.id}'
    return {
        'schemaId': settings.BENCHLING_ORDER_SCHEMA_ID,
        'registryId': settings.BENCHLING_REGISTRY_ID,
        'name': name,
        'entityRegistryId': name,
        'folderId': folder_id,
        'fields': {
            'Sent From': {'value': 'Esox Web App'},
            'Date/Time of Submission': {'value': order.created_at.isoformat() if order.created_at else ''},
            'Client Name': {'value': (order.customer or {}).get('email', '')},
        },
        'customFields': questionnaire_custom_fields(order.questionnaire_answers),
    }


def build_service_samples(order_entity_id, folder_id, service_item):
    """
    One entity per requested sample of a service.

    Benchling assigns the registry ids (DELETE_NAMES); names only need to be
    unique within the batch. Returns [] for services with no schema.
    """
    schema = settings.BENCHLING_SERVICE_SCHEMAS.get(service_item.get('service'))
    if schema is None:
        return []
    schema_id, name_prefix = schema

    return [
        {
            'schemaId': schema_id,
            'registryId': settings.BENCHLING_REGISTRY_ID,
            'namingStrategy': 'DELETE_NAMES',
            'name': f'{name_prefix}_{x}',
            'folderId': folder_id,
            'fields': {'Customer Order': {'value': order_entity_id}},
        }
        for x in range(int(service_item.get('numberOfSamples') or 0))
    ]


def build_sample_update(sample, benchling_id):
    """Bulk-update payload for a returned order sample and its metadata."""
    metadata = dict(sample.get('metadata') or {})
    sampled_at = metadata.pop(SAMPLED_AT_METADATA_KEY, None)
    if isinstance(sampled_at, dict):
        sampled_at = sampled_at.get('value')

    entity = {
        'id': benchling_id,
        'customFields': {
            key: {'value': str(item.get('value') if isinstance(item, dict) else item)}
            for key, item in metadata.items()
        },
    }
    if sampled_at:
        entity['fields'] = {'Date/Time Sampled': {'value': sampled_at}}
    return entity
