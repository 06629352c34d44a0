from django.contrib import admin
from django.urls import path, include
from rest_framework import permissions
from drf_yasg.views import get_schema_view
from drf_yasg import openapi

schema_view = get_schema_view(
    openapi.Info(
        title="Agro Escrow Settlement API",
        default_version='v1',
        description="Escrow settlement for farmer/buyer orders: holds, releases, disputes and refunds",
    ),
    public=True,
    permission_classes=(permissions.AllowAny,),
)

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('accounts.urls')),
    path('api/escrow/', include('escrow.urls')),
    path('api/payments/', include('payments.urls')),
    path('api/disputes/', include('disputes.urls')),

    # swagger/openapi routes
    path('swagger', schema_view.with_ui('swagger', cache_timeout=0), name='schema-swagger-ui'),
    path('redoc/', schema_view.with_ui('redoc', cache_timeout=0), name='schema-redoc'),
    path('openapi.json/', schema_view.without_ui(cache_timeout=0), name='schema-json'),
]
