from django.contrib import admin

from .models import EscrowEntry, EscrowEvent


class EscrowEventInline(admin.TabularInline):
    model = EscrowEvent
    extra = 0
    can_delete = False
    readonly_fields = ('kind', 'event', 'from_status', 'to_status', 'message', 'actor', 'created_at')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(EscrowEntry)
class EscrowEntryAdmin(admin.ModelAdmin):
    """Read-only: status only moves through the settlement engine."""
    list_display = ('order_id', 'buyer', 'farmer', 'total_amount', 'upfront_amount', 'remaining_amount', 'status', 'updated_at')
    list_filter = ('status',)
    search_fields = ('order_id', 'buyer__email', 'farmer__email', 'payment_reference')
    inlines = [EscrowEventInline]

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(EscrowEvent)
class EscrowEventAdmin(admin.ModelAdmin):
    list_display = ('entry', 'kind', 'event', 'from_status', 'to_status', 'actor', 'created_at')
    list_filter = ('kind', 'event')
    search_fields = ('entry__order_id', 'message')
