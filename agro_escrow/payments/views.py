from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status, permissions
from django.db import transaction
from django.shortcuts import get_object_or_404
from drf_yasg.utils import swagger_auto_schema
import logging

from escrow.exceptions import InvalidTransitionError
from .serializers import (
    InstructionOutcomeSerializer,
    PayoutInstructionSerializer,
    PayoutMethodSerializer,
    PaystackPayoutMethodCreateSerializer,
    StripePayoutMethodCreateSerializer,
    SetPayoutMethodFlagsSerializer,
)
from .models import PayoutInstruction, PayoutMethod, WebhookEvent
from .permissions import IsFarmer
from .providers import get_payment_provider
from .services import PayoutDispatcher


logger = logging.getLogger(__name__)


class PayoutMethodListCreateView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsFarmer]

    @swagger_auto_schema(
        operation_summary="List the farmer's payout methods",
        responses={200: PayoutMethodSerializer(many=True)}
    )
    def get(self, request):
        methods = PayoutMethod.objects.filter(user=request.user).order_by('-is_default', '-created_at')
        data = PayoutMethodSerializer(methods, many=True).data
        return Response(data)

    @swagger_auto_schema(
        operation_summary="Add a Paystack recipient or Stripe Connect account",
        responses={201: PayoutMethodSerializer(), 400: "Validation error"}
    )
    def post(self, request):
        provider = request.data.get('provider')
        if provider == 'paystack':
            serializer = PaystackPayoutMethodCreateSerializer(data=request.data, context={'request': request})
        elif provider == 'stripe':
            serializer = StripePayoutMethodCreateSerializer(data=request.data, context={'request': request})
        else:
            return Response({'detail': 'Unsupported provider'}, status=status.HTTP_400_BAD_REQUEST)
        serializer.is_valid(raise_exception=True)
        method = serializer.save()
        return Response(PayoutMethodSerializer(method).data, status=status.HTTP_201_CREATED)


class PayoutMethodDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsFarmer]

    @swagger_auto_schema(request_body=SetPayoutMethodFlagsSerializer, responses={200: PayoutMethodSerializer()})
    def patch(self, request, method_id):
        method = get_object_or_404(PayoutMethod, id=method_id, user=request.user)
        serializer = SetPayoutMethodFlagsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with transaction.atomic():
            if serializer.validated_data.get('is_default'):
                PayoutMethod.objects.filter(
                    user=request.user, provider=method.provider, is_default=True,
                ).exclude(pk=method.pk).update(is_default=False)
            for field, value in serializer.validated_data.items():
                setattr(method, field, value)
            method.save()
        return Response(PayoutMethodSerializer(method).data)

    def delete(self, request, method_id):
        method = get_object_or_404(PayoutMethod, id=method_id, user=request.user)
        method.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


class TransferWebhookView(APIView):
    """
    Transfer and refund outcomes pushed by a provider. Each provider event is
    processed once; redeliveries are acknowledged without effect.
    """
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def post(self, request, provider_name):
        try:
            provider = get_payment_provider(provider_name)
        except ValueError:
            return Response({'detail': 'Unknown provider'}, status=status.HTTP_404_NOT_FOUND)

        parsed = provider.parse_webhook(request.body, request.headers)
        if parsed is None:
            return Response({'detail': 'Invalid webhook'}, status=status.HTTP_400_BAD_REQUEST)

        if parsed['success'] is None:
            return Response({'status': 'ignored'})

        with transaction.atomic():
            _, created = WebhookEvent.objects.get_or_create(
                event_id=f"{provider_name}:{parsed['event_id']}",
                defaults={'provider': provider_name},
            )
            if not created:
                logger.info(f"Duplicate {provider_name} webhook {parsed['event_id']} ignored")
                return Response({'status': 'duplicate'})

            dispatcher = PayoutDispatcher()
            instruction = dispatcher.find_by_reference(parsed['reference'])
            try:
                dispatcher.handle_transfer_outcome(
                    instruction,
                    success=parsed['success'],
                    reference=parsed['reference'],
                    message=parsed.get('message', ''),
                )
            except InvalidTransitionError as exc:
                # keep the event, the confirmed instruction and the rejection journal row
                logger.warning(f"{provider_name} webhook {parsed['event_id']} rejected: {exc}")
                return Response({
                    'detail': exc.message,
                    'code': exc.code,
                    'event': exc.event,
                    'current_status': exc.current_status,
                }, status=status.HTTP_409_CONFLICT)

        return Response({'status': 'processed', 'instruction': instruction.id, 'instruction_status': instruction.status})


class InstructionConfirmView(APIView):
    """Operator report of a transfer carried out or failed outside the system."""
    permission_classes = [permissions.IsAdminUser]

    @swagger_auto_schema(
        operation_summary="Confirm or fail a payout instruction by hand",
        request_body=InstructionOutcomeSerializer,
        responses={200: PayoutInstructionSerializer(), 404: "Not found", 409: "Transition not allowed"}
    )
    def post(self, request, instruction_id):
        instruction = get_object_or_404(PayoutInstruction, id=instruction_id)
        serializer = InstructionOutcomeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        instruction = PayoutDispatcher().handle_transfer_outcome(
            instruction,
            success=serializer.validated_data['success'],
            reference=serializer.validated_data['reference'],
            message=serializer.validated_data['message'] or f"Reported by {request.user.email}",
        )
        return Response(PayoutInstructionSerializer(instruction).data)
