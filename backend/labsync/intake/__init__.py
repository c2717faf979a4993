from .adapters import SampleRecordIntakeAdapter, WebhookIntakeAdapter
from .types import SampleRecordInput, WebhookEvent

__all__ = ['SampleRecordInput', 'SampleRecordIntakeAdapter', 'WebhookEvent', 'WebhookIntakeAdapter']
