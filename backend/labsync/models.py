import uuid
from django.db import models
from django.utils import timezone


class OrderStatus(models.TextChoices):
    REVIEWING = 'reviewing', 'Reviewing'
    APPROVED = 'approved', 'Approved'
    KIT_SENT = 'kit-sent', 'Kit Sent'
    KIT_ARRIVED = 'kit-arrived', 'Kit Arrived'


class SampleStatus(models.TextChoices):
    SAMPLE_RETURNED = 'sample-returned', 'Sample Returned'
    PROCESSING = 'processing', 'Processing'
    COMPLETE = 'complete', 'Complete'


class ServiceType(models.TextChoices):
    QPCR = 'qPCR', 'qPCR'
    METAGENOMICS = 'Metagenomics', 'Metagenomics'
    GENOME_SEQUENCING = 'GenomeSequencing', 'Genome Sequencing'
    UNKNOWN = 'Unknown', 'Unknown'


# longest prefix first: EBGS must not be read as something shorter
_SERVICE_PREFIXES = (
    ('EBGS', ServiceType.GENOME_SEQUENCING),
    ('EBM', ServiceType.METAGENOMICS),
    ('EBq', ServiceType.QPCR),
)


def service_from_id(registry_id):
    """Derive the test type from a Benchling registry id such as EBM123."""
    for prefix, service in _SERVICE_PREFIXES:
        if (registry_id or '').startswith(prefix):
            return service.value
    return ServiceType.UNKNOWN.value


def new_order_id():
    return uuid.uuid4().hex


def now_millis():
    """Epoch milliseconds, the unit nested samples use for lastUpdated."""
    return int(timezone.now().timestamp() * 1000)


class UserProfile(models.Model):
    uid = models.CharField(max_length=128, primary_key=True)
    email = models.EmailField(blank=True)
    is_admin = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'user_profiles'


class Order(models.Model):
    """
    A customer's request for lab tests.

    Nested sample lists are JSON so a single UPDATE writes several of them
    atomically. Sample dicts look like
    {name, service, status, metadata, reportUrl, lastUpdated}.
    """

    id = models.CharField(max_length=64, primary_key=True, default=new_order_id)
    status = models.CharField(max_length=20, choices=OrderStatus.choices, default=OrderStatus.REVIEWING)
    user_id = models.CharField(max_length=128, db_index=True)
    title = models.CharField(max_length=200, blank=True)
    proposal = models.TextField(blank=True)
    customer = models.JSONField(default=dict, blank=True)
    delivery_address = models.JSONField(default=dict, blank=True)
    requested_services = models.JSONField(default=list, blank=True)
    questionnaire_answers = models.JSONField(default=dict, blank=True)
    # NULL until provisioning completes; written at most once
    ordered_samples = models.JSONField(null=True, blank=True)
    unsubmitted_samples = models.JSONField(default=list, blank=True)
    submitted_samples = models.JSONField(default=list, blank=True)
    # NULL until provisioning starts; kept across failed approvals
    task_ids = models.JSONField(null=True, blank=True)
    # external ids issued so far while task_ids is NULL:
    # {folderId, orderEntityId, tasks: {<service index>: task id}}
    provisioning = models.JSONField(default=dict, blank=True)
    order_reports = models.JSONField(default=list, blank=True)
    dispatched_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'orders'

    def ordered_sample(self, name):
        return next((s for s in self.ordered_samples or [] if s.get('name') == name), None)

    def submitted_sample(self, name):
        return next((s for s in self.submitted_samples or [] if s.get('name') == name), None)


class SyncedSample(models.Model):
    """Local mirror of a Benchling sample entity."""

    CREATED_IN_CHOICES = [
        ('webapp', 'Webapp'),
        ('benchling', 'Benchling'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    benchling_id = models.CharField(max_length=64, blank=True, db_index=True)
    entity_registry_id = models.CharField(max_length=64, db_index=True)
    sample_id = models.CharField(max_length=64)
    client_name = models.CharField(max_length=200, blank=True)
    sample_type = models.CharField(max_length=100, blank=True)
    sample_format = models.CharField(max_length=100, blank=True)
    sample_date = models.CharField(max_length=40, blank=True)
    sample_status = models.CharField(max_length=40, blank=True)
    # lookup-only back-reference; the order's lifecycle is not owned here
    order_id = models.CharField(max_length=64, blank=True, null=True, db_index=True)
    last_modified = models.DateTimeField(default=timezone.now)
    last_synced_from_webapp = models.DateTimeField(blank=True, null=True)
    last_synced_from_benchling = models.DateTimeField(blank=True, null=True)
    sync_version = models.PositiveIntegerField(default=1)
    created_in = models.CharField(max_length=20, choices=CREATED_IN_CHOICES, default='webapp')
    created_by = models.CharField(max_length=128, blank=True)
    archived = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'benchling_samples'
        ordering = ['-created_at']

    MIRRORED_FIELDS = (
        'sample_id',
        'client_name',
        'sample_type',
        'sample_format',
        'sample_date',
        'sample_status',
    )


class SyncQueueEntry(models.Model):
    OPERATION_CHOICES = [
        ('create', 'Create'),
        ('update', 'Update'),
        ('delete', 'Delete'),
        ('submit', 'Submit'),
    ]
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('failed', 'Failed'),
        ('done', 'Done'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    operation = models.CharField(max_length=10, choices=OPERATION_CHOICES)
    # SyncedSample id for create/update/delete, sample name for submit
    target_sample_id = models.CharField(max_length=64)
    benchling_id = models.CharField(max_length=64, blank=True)
    payload = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='pending', db_index=True)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True, null=True)
    last_attempt_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = 'sync_queue'
        ordering = ['created_at']


class SyncMetadata(models.Model):
    """Process-wide sync coordination state. Always row pk=1."""

    SINGLETON_PK = 1

    id = models.PositiveSmallIntegerField(primary_key=True, default=SINGLETON_PK, editable=False)
    import_in_progress = models.BooleanField(default=False)
    import_progress = models.JSONField(default=dict, blank=True)
    import_started_at = models.DateTimeField(blank=True, null=True)
    import_completed_at = models.DateTimeField(blank=True, null=True)
    last_webhook_received = models.DateTimeField(blank=True, null=True)
    last_successful_sync = models.DateTimeField(blank=True, null=True)
    sync_errors = models.JSONField(default=list, blank=True)

    class Meta:
        db_table = 'sync_metadata'

    @classmethod
    def load(cls):
        obj, _ = cls.objects.get_or_create(pk=cls.SINGLETON_PK)
        return obj
