from django.urls import path

from . import views

urlpatterns = [
    path("", views.EscrowEntryListView.as_view(), name="escrow-list"),
    path("events/payment-confirmed/", views.PaymentConfirmedView.as_view(), name="escrow-payment-confirmed"),
    path("events/upfront-settled/", views.UpfrontSettledView.as_view(), name="escrow-upfront-settled"),
    path("orders/<str:order_id>/", views.EscrowEntryDetailView.as_view(), name="escrow-detail"),
    path("orders/<str:order_id>/events/", views.EscrowEventListView.as_view(), name="escrow-events"),
    path("orders/<str:order_id>/confirm-delivery/", views.ConfirmDeliveryView.as_view(), name="escrow-confirm-delivery"),
]
