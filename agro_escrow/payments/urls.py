from django.urls import path

from . import views

urlpatterns = [
    path('payout-methods/', views.PayoutMethodListCreateView.as_view(), name='payout-methods'),
    path('payout-methods/<int:method_id>/', views.PayoutMethodDetailView.as_view(), name='payout-method-detail'),
    path('webhooks/<str:provider_name>/', views.TransferWebhookView.as_view(), name='transfer-webhook'),
    path('instructions/<int:instruction_id>/confirm/', views.InstructionConfirmView.as_view(), name='instruction-confirm'),
]
