from django.urls import path

from . import views

urlpatterns = [
    path(
        '',
        views.ListDisputesAPIView.as_view(),
        name='disputes-list',
    ),
    path(
        'orders/<str:order_id>/',
        views.RaiseDisputeAPIView.as_view(),
        name='disputes-raise',
    ),
    path(
        'orders/<str:order_id>/resolve/',
        views.ResolveDisputeAPIView.as_view(),
        name='disputes-resolve',
    ),
]
