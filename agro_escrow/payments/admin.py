from django.contrib import admin, messages

from escrow.exceptions import SettlementError
from .models import (
    PayoutInstruction,
    PayoutMethod,
    PaystackPayoutMethod,
    StripePayoutMethod,
    WebhookEvent,
)
from .services import PayoutDispatcher


@admin.register(PayoutInstruction)
class PayoutInstructionAdmin(admin.ModelAdmin):
    list_display = ('id', 'entry', 'instruction_type', 'recipient', 'amount', 'provider', 'status', 'attempts', 'updated_at')
    list_filter = ('instruction_type', 'provider', 'status')
    search_fields = ('idempotency_key', 'provider_reference', 'entry__order_id', 'recipient__email')
    readonly_fields = (
        'entry', 'instruction_type', 'recipient', 'amount', 'provider', 'idempotency_key', 'status',
        'attempts', 'provider_reference', 'last_error', 'created_at', 'updated_at', 'confirmed_at',
    )
    actions = ['redispatch_instructions']

    @admin.action(description="Re-dispatch selected instructions")
    def redispatch_instructions(self, request, queryset):
        dispatcher = PayoutDispatcher()
        for instruction in queryset:
            try:
                dispatcher.redispatch(instruction.pk)
            except SettlementError as e:
                self.message_user(request, f"{instruction.idempotency_key}: {e}", level=messages.WARNING)
            else:
                self.message_user(request, f"{instruction.idempotency_key} re-dispatched.")

    def has_add_permission(self, request):
        return False


@admin.register(PayoutMethod)
class PayoutMethodAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'provider', 'is_default', 'is_verified', 'is_active', 'created_at')
    list_filter = ('provider', 'is_default', 'is_verified', 'is_active')
    search_fields = ('user__email',)


@admin.register(PaystackPayoutMethod)
class PaystackPayoutMethodAdmin(admin.ModelAdmin):
    list_display = ('id', 'payout_method', 'recipient_code', 'account_name', 'account_number', 'bank_name')
    search_fields = ('recipient_code', 'account_name', 'account_number')


@admin.register(StripePayoutMethod)
class StripePayoutMethodAdmin(admin.ModelAdmin):
    list_display = ('id', 'payout_method', 'stripe_account_id', 'payouts_enabled')
    search_fields = ('stripe_account_id',)


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ('provider', 'event_id', 'received_at')
    list_filter = ('provider',)
    search_fields = ('event_id',)
