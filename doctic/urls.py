"""
URL configuration for the Doctic Care backend.

The API routes live in ``practice.routers``.  OpenAPI documentation is
exposed at ``/swagger/`` and ``/redoc/``; any other GET that is not an
API, admin or static path falls through to the frontend's index.html.
"""
from django.contrib import admin
from django.urls import include, path, re_path

from rest_framework import permissions
from drf_yasg.views import get_schema_view
from drf_yasg import openapi

from practice.views.health import spa_index

# API metadata for Swagger/OpenAPI documentation
api_info = openapi.Info(
    title="Doctic Care API",
    default_version='v1',
    description="Multi-tenant medical practice management backend.",
)

schema_view = get_schema_view(
    api_info,
    public=True,
    permission_classes=(permissions.AllowAny,),
)

urlpatterns = [
    path('admin/', admin.site.urls),
    path('', include('practice.routers')),
    path('swagger/', schema_view.with_ui('swagger', cache_timeout=0), name='schema-swagger-ui'),
    path('redoc/', schema_view.with_ui('redoc', cache_timeout=0), name='schema-redoc'),
    re_path(r'^(?!api/|admin/|static/|ws/|swagger/|redoc/)(?P<path>.*)$', spa_index),
]
