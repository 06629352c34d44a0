import uuid

from django.conf import settings
from django.db import models
from auditlog.registry import auditlog
from auditlog.models import AuditlogHistoryField

from . import state_machine


class EscrowEntry(models.Model):
    """
    Funds held for one order between payment and final disbursement.

    Amounts and parties are fixed at creation. Only the settlement engine
    changes ``status`` and the dispute/settlement fields, through
    ``LedgerStore.update_status``.
    """
    PENDING = state_machine.PENDING
    UPFRONT_HELD = state_machine.UPFRONT_HELD
    REMAINING_RELEASED = state_machine.REMAINING_RELEASED
    DISPUTED = state_machine.DISPUTED
    REFUNDED = state_machine.REFUNDED
    COMPLETED = state_machine.COMPLETED

    STATUS_CHOICES = state_machine.STATUS_CHOICES

    RESOLUTION_CHOICES = (
        ('buyer', 'Buyer'),
        ('farmer', 'Farmer'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_id = models.CharField(max_length=64, unique=True)
    buyer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='escrows_as_buyer')
    farmer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='escrows_as_farmer')

    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    upfront_amount = models.DecimalField(max_digits=12, decimal_places=2)
    remaining_amount = models.DecimalField(max_digits=12, decimal_places=2)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)

    payment_reference = models.CharField(max_length=255, blank=True)
    upfront_payment_reference = models.CharField(max_length=255, blank=True)
    delivery_due_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)

    dispute_reason = models.TextField(null=True, blank=True)
    disputed_at = models.DateTimeField(null=True, blank=True)
    dispute_resolution = models.CharField(max_length=10, choices=RESOLUTION_CHOICES, blank=True)
    dispute_resolved_at = models.DateTimeField(null=True, blank=True)

    completed_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    history = AuditlogHistoryField(pk_indexable=False)

    class Meta:
        verbose_name = "Escrow Entry"
        verbose_name_plural = "Escrow Entries"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'delivery_due_at'], name='escrow_status_due_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(upfront_amount__gte=0) & models.Q(remaining_amount__gte=0),
                name='escrow_split_non_negative',
            ),
        ]

    def __str__(self):
        return f"Escrow for order {self.order_id} ({self.total_amount}, {self.status})"

    @property
    def is_terminal(self):
        return state_machine.is_terminal(self.status)

    @property
    def held_amount(self):
        """What the buyer has in escrow and gets back on a refund."""
        return self.upfront_amount


class EscrowEvent(models.Model):
    """Journal of applied transitions, rejected events and operator alerts."""

    TRANSITION = 'transition'
    REJECTED = 'rejected'
    ALERT = 'alert'

    KIND_CHOICES = (
        (TRANSITION, 'Transition'),
        (REJECTED, 'Rejected event'),
        (ALERT, 'Operator alert'),
    )

    entry = models.ForeignKey(EscrowEntry, on_delete=models.PROTECT, related_name='events')
    kind = models.CharField(max_length=20, choices=KIND_CHOICES, default=TRANSITION)
    event = models.CharField(max_length=40)
    from_status = models.CharField(max_length=20, blank=True)
    to_status = models.CharField(max_length=20, blank=True)
    message = models.TextField(blank=True)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='escrow_events',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']

    def __str__(self):
        return f"{self.entry.order_id}: {self.event} ({self.from_status} -> {self.to_status})"


auditlog.register(EscrowEntry)
