from __future__ import annotations

from typing import Any

from django.conf import settings

DEFAULTS: dict[str, Any] = {
    # Who may edit/delete a task: "visible", "involved" or "creator".
    "TASK_EDIT_POLICY": "visible",
    "TASK_DELETE_POLICY": "creator",
    "DEFAULT_CATEGORY": "Operations",
    "FALLBACK_CATEGORY": "Other",
    "ROCK_NUMBER_RETRIES": 5,
    "EMAIL_NOTIFICATIONS_ENABLED": False,
    "APP_URL": "http://localhost:8000",
    "TRUST_IDENTITY_HEADERS": False,
    "IDENTITY_EMAIL_HEADER": "HTTP_X_AUTH_REQUEST_EMAIL",
    "IDENTITY_NAME_HEADER": "HTTP_X_AUTH_REQUEST_USER",
    "ALLOWED_EMAIL_DOMAIN": "",
}


# PUBLIC_INTERFACE
def get_setting(name: str) -> Any:
    """Return a TASKBOARD setting, falling back to the built-in default."""
    overrides = getattr(settings, "TASKBOARD", None) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
