from rest_framework import serializers
from django.db import transaction

from .models import PayoutInstruction, PayoutMethod, PaystackPayoutMethod, StripePayoutMethod


class PayoutInstructionSerializer(serializers.ModelSerializer):
    order_id = serializers.CharField(source='entry.order_id', read_only=True)
    recipient_email = serializers.EmailField(source='recipient.email', read_only=True)

    class Meta:
        model = PayoutInstruction
        fields = [
            'id', 'order_id', 'instruction_type', 'recipient', 'recipient_email', 'amount', 'provider',
            'idempotency_key', 'status', 'attempts', 'provider_reference', 'last_error',
            'created_at', 'updated_at', 'confirmed_at',
        ]
        read_only_fields = fields


class InstructionOutcomeSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    reference = serializers.CharField(required=False, allow_blank=True, default='')
    message = serializers.CharField(required=False, allow_blank=True, default='')


class PayoutMethodSerializer(serializers.ModelSerializer):
    class Meta:
        model = PayoutMethod
        fields = ['id', 'provider', 'is_default', 'is_verified', 'is_active', 'created_at', 'updated_at']


def _clear_other_defaults(user, provider):
    PayoutMethod.objects.filter(user=user, provider=provider, is_default=True).update(is_default=False)


class PaystackPayoutMethodCreateSerializer(serializers.Serializer):
    recipient_code = serializers.CharField(max_length=64)
    account_name = serializers.CharField()
    account_number = serializers.CharField(required=False, allow_blank=True)
    bank_name = serializers.CharField(required=False, allow_blank=True)
    is_default = serializers.BooleanField(default=False)

    def validate_recipient_code(self, value):
        if not value.startswith('RCP_'):
            raise serializers.ValidationError('Paystack recipient codes start with RCP_.')
        return value

    def validate(self, attrs):
        user = self.context['request'].user
        existing = PaystackPayoutMethod.objects.filter(
            payout_method__user=user,
            recipient_code=attrs.get('recipient_code'),
        ).first()
        if existing:
            raise serializers.ValidationError('This Paystack recipient is already added as a payout method.')
        return attrs

    def create(self, validated_data):
        user = self.context['request'].user
        is_default = validated_data.pop('is_default', False)
        with transaction.atomic():
            if is_default:
                _clear_other_defaults(user, 'paystack')
            base = PayoutMethod.objects.create(user=user, provider='paystack', is_default=is_default)
            PaystackPayoutMethod.objects.create(payout_method=base, **validated_data)
        return base


class StripePayoutMethodCreateSerializer(serializers.Serializer):
    stripe_account_id = serializers.CharField()
    is_default = serializers.BooleanField(default=False)

    def validate(self, attrs):
        if StripePayoutMethod.objects.filter(stripe_account_id=attrs.get('stripe_account_id')).exists():
            raise serializers.ValidationError('This Stripe account is already added as a payout method.')
        return attrs

    def create(self, validated_data):
        user = self.context['request'].user
        is_default = validated_data.pop('is_default', False)
        with transaction.atomic():
            if is_default:
                _clear_other_defaults(user, 'stripe')
            base = PayoutMethod.objects.create(user=user, provider='stripe', is_default=is_default)
            StripePayoutMethod.objects.create(payout_method=base, **validated_data)
        return base


class SetPayoutMethodFlagsSerializer(serializers.Serializer):
    is_default = serializers.BooleanField(required=False)
    is_active = serializers.BooleanField(required=False)
