import json
from pathlib import Path

from django.core.management.base import BaseCommand
from django.test import RequestFactory
from drf_yasg.views import get_schema_view
from rest_framework.permissions import AllowAny

from config.urls import API_INFO


class Command(BaseCommand):
    help = "Write the Swagger/OpenAPI schema of the taskboard API to a JSON file."

    def add_arguments(self, parser):
        parser.add_argument(
            "--output",
            default="interfaces/openapi.json",
            help="Destination path, relative to the working directory.",
        )

    def handle(self, *args, **options):
        # drf-yasg only needs a request for host/scheme; the path is not routed.
        request = RequestFactory().get("/swagger.json")
        view = get_schema_view(API_INFO, public=True, permission_classes=(AllowAny,))
        response = view.without_ui(cache_timeout=0)(request)
        response.render()
        schema = json.loads(response.content.decode())

        output = Path(options["output"])
        output.parent.mkdir(parents=True, exist_ok=True)
        with output.open("w", encoding="utf-8") as fh:
            json.dump(schema, fh, indent=2, sort_keys=True)
        self.stdout.write(self.style.SUCCESS(f"Wrote {len(schema.get('paths', {}))} paths to {output}"))
