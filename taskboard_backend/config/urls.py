"""
Root URL configuration: admin site, the REST API under /api/, and Swagger docs.
"""
from django.contrib import admin
from django.urls import include, path, re_path
from django.views.decorators.csrf import csrf_exempt
from drf_yasg import openapi
from drf_yasg.views import get_schema_view
from rest_framework import permissions

API_INFO = openapi.Info(
    title="Taskboard API",
    default_version="v1",
    description=(
        "Team kanban board. Every task read and write is limited to the tasks the caller can see.\n\n"
        "Auth: obtain a JWT pair via /api/auth/login/ and send\n"
        "Authorization: Bearer <access_token>"
    ),
)

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/", include("api.urls")),
]

schema_view = get_schema_view(API_INFO, public=True, permission_classes=(permissions.AllowAny,))


def request_base_url(request) -> str:
    """Scheme and host the client used, honouring a port set by a proxy."""
    host = request.get_host()
    forwarded_port = request.META.get("HTTP_X_FORWARDED_PORT")
    if ":" not in host and forwarded_port:
        host = f"{host}:{forwarded_port}"
    return f"{request.scheme}://{host}"


@csrf_exempt
def swagger_ui(request, *args, **kwargs):
    view = get_schema_view(
        API_INFO,
        public=True,
        url=request_base_url(request),
        permission_classes=(permissions.AllowAny,),
    )
    return view.with_ui("swagger", cache_timeout=0)(request)


urlpatterns += [
    re_path(r"^docs/$", swagger_ui, name="schema-swagger-ui"),
    re_path(r"^redoc/$", schema_view.with_ui("redoc", cache_timeout=0), name="schema-redoc"),
    re_path(r"^swagger\.json$", schema_view.without_ui(cache_timeout=0), name="schema-json"),
]
