from rest_framework import serializers

from escrow.models import EscrowEntry


class DisputeCreateSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000, trim_whitespace=True)


class DisputeResolveSerializer(serializers.Serializer):
    """
    The moderator names the winning party: ``buyer`` gets the held amount
    refunded, ``farmer`` is paid the remaining amount.
    """
    winning_party = serializers.ChoiceField(choices=EscrowEntry.RESOLUTION_CHOICES)


class DisputedEscrowSerializer(serializers.ModelSerializer):
    buyer_email = serializers.EmailField(source='buyer.email', read_only=True)
    farmer_email = serializers.EmailField(source='farmer.email', read_only=True)

    class Meta:
        model = EscrowEntry
        fields = [
            'id', 'order_id', 'buyer_email', 'farmer_email', 'total_amount', 'upfront_amount',
            'remaining_amount', 'status', 'dispute_reason', 'disputed_at', 'dispute_resolution',
            'dispute_resolved_at',
        ]
        read_only_fields = fields
