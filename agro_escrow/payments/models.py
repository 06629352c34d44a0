from django.db import models
from django.contrib.auth import get_user_model
from auditlog.registry import auditlog

from escrow.models import EscrowEntry

User = get_user_model()


class PayoutInstruction(models.Model):
    """
    A disbursement the settlement engine emitted for one escrow entry.

    The one-to-one link means an entry can hold a payout or a refund, never
    both. ``idempotency_key`` identifies the transfer towards the provider.
    """
    PAYOUT = 'payout'
    REFUND = 'refund'

    TYPE_CHOICES = (
        (PAYOUT, 'Payout'),
        (REFUND, 'Refund'),
    )

    PENDING = 'pending'
    PROCESSING = 'processing'
    SENT = 'sent'
    CONFIRMED = 'confirmed'
    FAILED = 'failed'
    ESCALATED = 'escalated'

    STATUS_CHOICES = (
        (PENDING, 'Pending'),
        (PROCESSING, 'Processing'),
        (SENT, 'Sent, awaiting confirmation'),
        (CONFIRMED, 'Confirmed'),
        (FAILED, 'Failed'),
        (ESCALATED, 'Escalated'),
    )

    DISPATCHABLE_STATUSES = (PENDING, FAILED)

    entry = models.OneToOneField(EscrowEntry, on_delete=models.PROTECT, related_name='instruction')
    instruction_type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    recipient = models.ForeignKey(User, on_delete=models.PROTECT, related_name='payout_instructions')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    provider = models.CharField(max_length=50)
    idempotency_key = models.CharField(max_length=120, unique=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    attempts = models.PositiveIntegerField(default=0)
    provider_reference = models.CharField(max_length=255, blank=True)
    last_error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.instruction_type} of {self.amount} for order {self.entry.order_id} ({self.status})"


class PayoutMethod(models.Model):
    """
    Base payout method descriptor. Provider-specific details live in child tables.
    """
    PROVIDER_CHOICES = (
        ('paystack', 'Paystack'),
        ('stripe', 'Stripe'),
    )

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='payout_methods')
    provider = models.CharField(max_length=20, choices=PROVIDER_CHOICES)

    is_default = models.BooleanField(default=False)
    is_verified = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'provider'],
                condition=models.Q(is_default=True),
                name='one_default_payout_method_per_provider',
            ),
        ]
        verbose_name = "Payout Method"
        verbose_name_plural = "Payout Methods"

    def __str__(self):
        return f"{self.user.email} - {self.provider}"


class PaystackPayoutMethod(models.Model):
    """
    Paystack transfer recipient created for a farmer's bank or mobile money account.
    """
    payout_method = models.OneToOneField(PayoutMethod, on_delete=models.CASCADE, related_name='paystack_details')
    recipient_code = models.CharField(max_length=64, help_text="Paystack transfer recipient code (RCP_...)")
    account_name = models.CharField(max_length=255, help_text="Recipient's full name")
    account_number = models.CharField(max_length=50, blank=True, help_text="Bank account or mobile number")
    bank_name = models.CharField(max_length=100, blank=True, help_text="Bank or mobile network (for display)")

    def __str__(self):
        return f"Paystack – {self.account_name} ({self.recipient_code})"


class StripePayoutMethod(models.Model):
    """
    Stripe Connect account reference for farmer payouts.
    """
    payout_method = models.OneToOneField(PayoutMethod, on_delete=models.CASCADE, related_name='stripe_details')
    stripe_account_id = models.CharField(max_length=255, help_text="Stripe Connect account ID (acct_...)", unique=True)
    payouts_enabled = models.BooleanField(default=False)

    def __str__(self):
        return f"Stripe – {self.stripe_account_id}"


class WebhookEvent(models.Model):
    """
    Stores processed webhook event IDs to ensure idempotency.
    """
    provider = models.CharField(max_length=50)
    event_id = models.CharField(max_length=255, unique=True)
    received_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.provider}:{self.event_id}"


auditlog.register(PayoutInstruction)
