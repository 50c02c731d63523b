# billing_sync/models.py

from django.db import models
from django.utils import timezone


class Timestamped(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


# ── Work queues ─────────────────────────────────────────────────────────────

class WebhookEvent(models.Model):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    STATUSES = (
        (PENDING, "Pending"),
        (PROCESSING, "Processing"),
        (SUCCESS, "Success"),
        (FAILED, "Failed"),
    )

    event_name = models.CharField(max_length=128)
    entity_id = models.CharField(max_length=64, blank=True, null=True)
    payload = models.JSONField(default=dict)
    dedupe_key = models.CharField(max_length=64, unique=True)
    status = models.CharField(max_length=16, choices=STATUSES, default=PENDING)
    route = models.CharField(max_length=32, blank=True, default="")
    received_at = models.DateTimeField(default=timezone.now)
    claimed_at = models.DateTimeField(blank=True, null=True)
    processed_at = models.DateTimeField(blank=True, null=True)
    error = models.TextField(blank=True, null=True)

    class Meta:
        db_table = "iugu_webhook_events"
        indexes = [
            models.Index(fields=["status", "received_at"]),
            models.Index(fields=["event_name", "received_at"]),
        ]

    def __str__(self):
        return f"{self.event_name} [{self.entity_id or '-'}] {self.status}"


class StagingBatch(models.Model):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"
    STATUSES = (
        (PENDING, "Pending"),
        (PROCESSING, "Processing"),
        (DONE, "Done"),
        (FAILED, "Failed"),
    )

    entity = models.CharField(max_length=32)
    run_id = models.CharField(max_length=64)
    page = models.PositiveIntegerField()
    payload = models.JSONField(default=list)
    record_count = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=16, choices=STATUSES, default=PENDING)
    error = models.TextField(blank=True, null=True)
    created_at = models.DateTimeField(default=timezone.now)
    claimed_at = models.DateTimeField(blank=True, null=True)
    processed_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = "iugu_staging_batches"
        constraints = [
            models.UniqueConstraint(fields=["entity", "run_id", "page"], name="uniq_staging_run_page"),
        ]
        indexes = [
            models.Index(fields=["status", "created_at"]),
        ]

    def __str__(self):
        return f"{self.entity}/{self.run_id} p{self.page} ({self.record_count}) {self.status}"


class CheckpointRecord(models.Model):
    """Low-water mark per tracked entity: a timestamp (incremental) or a page (backfill)."""
    entity_name = models.CharField(max_length=64, unique=True)
    last_sync_timestamp = models.DateTimeField(blank=True, null=True)
    last_page = models.PositiveIntegerField(blank=True, null=True)
    run_id = models.CharField(max_length=64, blank=True, default="")
    completed = models.BooleanField(default=False)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "sync_state"

    def __str__(self):
        mark = self.last_sync_timestamp.isoformat() if self.last_sync_timestamp else f"page {self.last_page}"
        return f"{self.entity_name} @ {mark}"


# ── Target entity tables (natural id = upstream id) ─────────────────────────

class IuguEntity(Timestamped):
    id = models.CharField(primary_key=True, max_length=64)
    created_at_iugu = models.DateTimeField(blank=True, null=True)
    updated_at_iugu = models.DateTimeField(blank=True, null=True)
    raw_json = models.JSONField(default=dict, blank=True)

    class Meta:
        abstract = True


class IuguCustomer(IuguEntity):
    email = models.CharField(max_length=255, blank=True, null=True)
    name = models.CharField(max_length=255, blank=True, null=True)
    cpf_cnpj = models.CharField(max_length=32, blank=True, null=True)
    phone = models.CharField(max_length=32, blank=True, null=True)
    notes = models.TextField(blank=True, null=True)

    class Meta:
        db_table = "iugu_customers"


class IuguPlan(IuguEntity):
    name = models.CharField(max_length=255, blank=True, null=True)
    identifier = models.CharField(max_length=255, blank=True, null=True, db_index=True)
    interval = models.IntegerField(blank=True, null=True)
    interval_type = models.CharField(max_length=16, blank=True, null=True)
    value_cents = models.BigIntegerField(blank=True, null=True)
    currency = models.CharField(max_length=8, blank=True, null=True)

    class Meta:
        db_table = "iugu_plans"


class IuguSubscription(IuguEntity):
    customer_id = models.CharField(max_length=64, blank=True, null=True, db_index=True)
    plan_identifier = models.CharField(max_length=255, blank=True, null=True)
    suspended = models.BooleanField(blank=True, null=True)
    active = models.BooleanField(blank=True, null=True)
    price_cents = models.BigIntegerField(blank=True, null=True)
    expires_at = models.DateField(blank=True, null=True)
    cycled_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = "iugu_subscriptions"


class IuguInvoice(IuguEntity):
    account_id = models.CharField(max_length=64, blank=True, null=True)
    customer_id = models.CharField(max_length=64, blank=True, null=True, db_index=True)
    subscription_id = models.CharField(max_length=64, blank=True, null=True, db_index=True)
    status = models.CharField(max_length=32, blank=True, null=True, db_index=True)
    due_date = models.DateField(blank=True, null=True)
    paid_at = models.DateTimeField(blank=True, null=True)
    payment_method = models.CharField(max_length=64, blank=True, null=True)
    currency = models.CharField(max_length=8, blank=True, null=True)
    total_cents = models.BigIntegerField(blank=True, null=True)
    paid_cents = models.BigIntegerField(blank=True, null=True)
    discount_cents = models.BigIntegerField(blank=True, null=True)
    taxes_cents = models.BigIntegerField(blank=True, null=True)
    commission_cents = models.BigIntegerField(blank=True, null=True)
    payer_name = models.CharField(max_length=255, blank=True, null=True)
    payer_email = models.CharField(max_length=255, blank=True, null=True)
    payer_cpf_cnpj = models.CharField(max_length=32, blank=True, null=True)
    external_reference = models.CharField(max_length=255, blank=True, null=True)
    secure_url = models.CharField(max_length=512, blank=True, null=True)

    class Meta:
        db_table = "iugu_invoices"


class IuguInvoiceItem(IuguEntity):
    invoice_id = models.CharField(max_length=64, db_index=True)
    description = models.CharField(max_length=512, blank=True, null=True)
    quantity = models.IntegerField(blank=True, null=True)
    price_cents = models.BigIntegerField(blank=True, null=True)

    class Meta:
        db_table = "iugu_invoice_items"


class IuguTransfer(IuguEntity):
    amount_cents = models.BigIntegerField(blank=True, null=True)
    currency = models.CharField(max_length=8, blank=True, null=True)
    status = models.CharField(max_length=32, blank=True, null=True)
    sender_id = models.CharField(max_length=64, blank=True, null=True)
    receiver_id = models.CharField(max_length=64, blank=True, null=True)

    class Meta:
        db_table = "iugu_transfers"


class IuguCharge(IuguEntity):
    invoice_id = models.CharField(max_length=64, blank=True, null=True, db_index=True)
    customer_id = models.CharField(max_length=64, blank=True, null=True)
    status = models.CharField(max_length=32, blank=True, null=True)
    method = models.CharField(max_length=64, blank=True, null=True)
    amount_cents = models.BigIntegerField(blank=True, null=True)

    class Meta:
        db_table = "iugu_charges"


class IuguChargeback(IuguEntity):
    invoice_id = models.CharField(max_length=64, blank=True, null=True, db_index=True)
    status = models.CharField(max_length=32, blank=True, null=True)
    reason = models.CharField(max_length=255, blank=True, null=True)
    amount_cents = models.BigIntegerField(blank=True, null=True)
    expires_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = "iugu_chargebacks"


class IuguPaymentMethod(IuguEntity):
    customer_id = models.CharField(max_length=64, blank=True, null=True, db_index=True)
    description = models.CharField(max_length=255, blank=True, null=True)
    item_type = models.CharField(max_length=32, blank=True, null=True)
    brand = models.CharField(max_length=32, blank=True, null=True)
    last_four = models.CharField(max_length=8, blank=True, null=True)
    is_default = models.BooleanField(blank=True, null=True)

    class Meta:
        db_table = "iugu_payment_methods"


class IuguAccount(IuguEntity):
    name = models.CharField(max_length=255, blank=True, null=True)
    verified = models.BooleanField(blank=True, null=True)
    balance_cents = models.BigIntegerField(blank=True, null=True)

    class Meta:
        db_table = "iugu_accounts"


class UnroutedRecord(Timestamped):
    """Generic fallback sink for payloads whose event name has no dedicated table."""
    kind = models.CharField(max_length=64)
    natural_id = models.CharField(max_length=128)
    event_name = models.CharField(max_length=128, blank=True, default="")
    payload = models.JSONField(default=dict)
    hits = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "iugu_unrouted_records"
        constraints = [
            models.UniqueConstraint(fields=["kind", "natural_id"], name="uniq_unrouted_kind_id"),
        ]

    def __str__(self):
        return f"{self.kind}:{self.natural_id} x{self.hits}"
