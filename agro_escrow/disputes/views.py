from rest_framework import generics, permissions, status, filters, views
from rest_framework.response import Response
from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from . import serializers as my_serializers
from .permissions import IsModerator, IsEscrowParty
from escrow.models import EscrowEntry
from escrow.serializers import EscrowEntrySerializer
from escrow.services import SettlementEngine


class RaiseDisputeAPIView(views.APIView):
    """
    Allows the buyer or farmer of an order to dispute its escrow.
    Only possible while the upfront amount is held.
    """
    permission_classes = [permissions.IsAuthenticated, IsEscrowParty]

    @swagger_auto_schema(
        operation_summary="Raise a dispute on an order's escrow",
        request_body=my_serializers.DisputeCreateSerializer,
        responses={
            201: EscrowEntrySerializer(),
            400: "Validation error",
            403: "Forbidden",
            409: "Escrow cannot be disputed in its current status",
        }
    )
    def post(self, request, order_id):
        entry = get_object_or_404(EscrowEntry, order_id=order_id)
        self.check_object_permissions(request, entry)

        serializer = my_serializers.DisputeCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        entry = SettlementEngine().on_dispute_raised(
            order_id,
            serializer.validated_data['reason'],
            actor=request.user,
        )
        return Response({
            "detail": "Dispute raised successfully.",
            "escrow": EscrowEntrySerializer(entry).data,
        }, status=status.HTTP_201_CREATED)


class ListDisputesAPIView(generics.ListAPIView):
    """
    Escrows that are or were disputed, for moderators.
    """
    serializer_class = my_serializers.DisputedEscrowSerializer
    permission_classes = [permissions.IsAuthenticated, IsModerator]
    filter_backends = [filters.OrderingFilter, DjangoFilterBackend]
    filterset_fields = ['status', 'dispute_resolution']
    ordering_fields = ['disputed_at', 'updated_at']
    ordering = ['-disputed_at']

    @swagger_auto_schema(
        operation_summary="List disputed escrows",
        manual_parameters=[
            openapi.Parameter(
                'status',
                openapi.IN_QUERY,
                description="Filter by escrow status, e.g. disputed for open disputes",
                type=openapi.TYPE_STRING
            ),
            openapi.Parameter(
                'ordering',
                openapi.IN_QUERY,
                description="Order results by one of: disputed_at, updated_at",
                type=openapi.TYPE_STRING
            ),
        ],
        responses={200: my_serializers.DisputedEscrowSerializer(many=True)}
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        return EscrowEntry.objects.filter(disputed_at__isnull=False).select_related('buyer', 'farmer')


class ResolveDisputeAPIView(views.APIView):
    """
    Allows a moderator to settle a dispute in favour of the buyer or farmer.
    """
    permission_classes = [permissions.IsAuthenticated, IsModerator]

    @swagger_auto_schema(
        operation_summary="Resolve a disputed escrow",
        request_body=my_serializers.DisputeResolveSerializer,
        responses={
            200: EscrowEntrySerializer(),
            400: "Validation error",
            404: "Not found",
            409: "Escrow is not disputed",
        }
    )
    def post(self, request, order_id):
        serializer = my_serializers.DisputeResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        entry = SettlementEngine().on_dispute_resolved(
            order_id,
            serializer.validated_data['winning_party'],
            actor=request.user,
        )
        return Response(EscrowEntrySerializer(entry).data)
