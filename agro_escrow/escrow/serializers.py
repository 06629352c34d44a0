from decimal import Decimal

from django.contrib.auth import get_user_model
from rest_framework import serializers

from .models import EscrowEntry, EscrowEvent
from payments.models import PayoutInstruction

User = get_user_model()


class PayoutInstructionSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = PayoutInstruction
        fields = (
            "id",
            "instruction_type",
            "amount",
            "provider",
            "status",
            "attempts",
            "last_error",
            "created_at",
            "confirmed_at",
        )
        read_only_fields = fields


class EscrowEntrySerializer(serializers.ModelSerializer):
    buyer_email = serializers.EmailField(source="buyer.email", read_only=True)
    farmer_email = serializers.EmailField(source="farmer.email", read_only=True)
    status_display = serializers.CharField(source="get_status_display", read_only=True)
    instruction = serializers.SerializerMethodField()

    class Meta:
        model = EscrowEntry
        fields = (
            "id",
            "order_id",
            "buyer",
            "buyer_email",
            "farmer",
            "farmer_email",
            "total_amount",
            "upfront_amount",
            "remaining_amount",
            "status",
            "status_display",
            "payment_reference",
            "upfront_payment_reference",
            "delivery_due_at",
            "delivered_at",
            "dispute_reason",
            "disputed_at",
            "dispute_resolution",
            "dispute_resolved_at",
            "completed_at",
            "refunded_at",
            "created_at",
            "updated_at",
            "instruction",
        )
        read_only_fields = fields

    def get_instruction(self, obj):
        instruction = getattr(obj, "instruction", None)
        if instruction is None:
            return None
        return PayoutInstructionSummarySerializer(instruction).data


class EscrowEventSerializer(serializers.ModelSerializer):
    actor_email = serializers.EmailField(source="actor.email", read_only=True, default=None)

    class Meta:
        model = EscrowEvent
        fields = (
            "id",
            "kind",
            "event",
            "from_status",
            "to_status",
            "message",
            "actor_email",
            "created_at",
        )
        read_only_fields = fields


class PaymentConfirmedSerializer(serializers.Serializer):
    """Payment-confirmed event posted by the payment gateway adapter."""

    order_id = serializers.CharField(max_length=64)
    buyer = serializers.PrimaryKeyRelatedField(queryset=User.objects.filter(is_active=True))
    farmer = serializers.PrimaryKeyRelatedField(queryset=User.objects.filter(is_active=True))
    total_amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal("0.01"),
    )
    payment_reference = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")

    def validate_buyer(self, value):
        if value.user_type != User.BUYER:
            raise serializers.ValidationError("User is not a buyer.")
        return value

    def validate_farmer(self, value):
        if value.user_type != User.FARMER:
            raise serializers.ValidationError("User is not a farmer.")
        return value


class UpfrontSettledSerializer(serializers.Serializer):
    order_id = serializers.CharField(max_length=64)
    upfront_payment_reference = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
