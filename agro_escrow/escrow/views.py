from django.shortcuts import get_object_or_404
from rest_framework import generics, permissions, status, views
from rest_framework.response import Response
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from .models import EscrowEntry
from .permissions import IsEscrowBuyerOrStaff, IsEscrowParticipantOrStaff
from .serializers import (
	EscrowEntrySerializer,
	EscrowEventSerializer,
	PaymentConfirmedSerializer,
	UpfrontSettledSerializer,
)
from .services import SettlementEngine

order_id_param = openapi.Parameter(
	'order_id',
	openapi.IN_PATH,
	description="Order the escrow belongs to",
	type=openapi.TYPE_STRING,
)


class EscrowEntryListView(generics.ListAPIView):
	"""List all escrows relevant to the authenticated user."""

	serializer_class = EscrowEntrySerializer
	permission_classes = [permissions.IsAuthenticated]
	filterset_fields = ['status']

	@swagger_auto_schema(
		operation_summary="List escrow entries for the current user",
		responses={200: EscrowEntrySerializer(many=True)}
	)
	def get(self, request, *args, **kwargs):
		return super().get(request, *args, **kwargs)

	def get_queryset(self):
		user = self.request.user
		queryset = EscrowEntry.objects.select_related("buyer", "farmer", "instruction")

		if user.is_staff:
			return queryset

		user_type = getattr(user, "user_type", None)
		if user_type == "buyer":
			return queryset.filter(buyer=user)
		if user_type == "farmer":
			return queryset.filter(farmer=user)
		return queryset.none()


class EscrowEntryDetailView(generics.RetrieveAPIView):
	serializer_class = EscrowEntrySerializer
	permission_classes = [permissions.IsAuthenticated, IsEscrowParticipantOrStaff]
	queryset = EscrowEntry.objects.select_related("buyer", "farmer", "instruction")
	lookup_field = "order_id"

	@swagger_auto_schema(
		operation_summary="Retrieve the escrow for an order",
		manual_parameters=[order_id_param],
		responses={200: EscrowEntrySerializer(), 404: "Not found"}
	)
	def get(self, request, *args, **kwargs):
		return super().get(request, *args, **kwargs)


class EscrowEventListView(generics.ListAPIView):
	"""Transition journal of one escrow, oldest first."""

	serializer_class = EscrowEventSerializer
	permission_classes = [permissions.IsAuthenticated]

	@swagger_auto_schema(
		operation_summary="List the journal of an escrow",
		manual_parameters=[order_id_param],
		responses={200: EscrowEventSerializer(many=True), 403: "Forbidden", 404: "Not found"}
	)
	def get(self, request, *args, **kwargs):
		return super().get(request, *args, **kwargs)

	def get_queryset(self):
		entry = get_object_or_404(EscrowEntry, order_id=self.kwargs["order_id"])
		if not IsEscrowParticipantOrStaff().has_object_permission(self.request, self, entry):
			self.permission_denied(self.request, message="Not authorised to access this escrow.")
		return entry.events.select_related("actor")


class ConfirmDeliveryView(views.APIView):
	permission_classes = [permissions.IsAuthenticated, IsEscrowBuyerOrStaff]

	@swagger_auto_schema(
		operation_summary="Confirm delivery and release the remaining amount to the farmer",
		manual_parameters=[order_id_param],
		request_body=None,
		responses={
			200: EscrowEntrySerializer(),
			403: "Forbidden",
			404: "Not found",
			409: "Transition not allowed in the current status",
		}
	)
	def post(self, request, order_id):
		entry = get_object_or_404(EscrowEntry, order_id=order_id)
		self.check_object_permissions(request, entry)

		entry = SettlementEngine().on_delivery_confirmed(order_id, actor=request.user)
		return Response(EscrowEntrySerializer(entry).data, status=status.HTTP_200_OK)


class PaymentConfirmedView(views.APIView):
	"""Entry point for the payment gateway adapter; creates the escrow."""

	permission_classes = [permissions.IsAdminUser]

	@swagger_auto_schema(
		operation_summary="Record a confirmed order payment",
		request_body=PaymentConfirmedSerializer,
		responses={200: EscrowEntrySerializer(), 400: "Validation error", 403: "Forbidden"}
	)
	def post(self, request):
		serializer = PaymentConfirmedSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)
		data = serializer.validated_data

		entry = SettlementEngine().on_payment_confirmed(
			data["order_id"],
			data["buyer"].id,
			data["farmer"].id,
			data["total_amount"],
			payment_reference=data["payment_reference"],
			actor=request.user,
		)
		return Response(EscrowEntrySerializer(entry).data, status=status.HTTP_200_OK)


class UpfrontSettledView(views.APIView):
	permission_classes = [permissions.IsAdminUser]

	@swagger_auto_schema(
		operation_summary="Record settlement of the upfront payment",
		request_body=UpfrontSettledSerializer,
		responses={200: EscrowEntrySerializer(), 404: "Not found", 409: "Transition not allowed in the current status"}
	)
	def post(self, request):
		serializer = UpfrontSettledSerializer(data=request.data)
		serializer.is_valid(raise_exception=True)
		data = serializer.validated_data

		entry = SettlementEngine().on_upfront_settled(
			data["order_id"],
			upfront_payment_reference=data["upfront_payment_reference"],
			actor=request.user,
		)
		return Response(EscrowEntrySerializer(entry).data, status=status.HTTP_200_OK)
