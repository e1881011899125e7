from __future__ import annotations

import logging

from django.conf import settings
from django.core.mail import send_mail

from .conf import get_setting

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def send_assignment_email(*, to: str, assignee_name: str, task_title: str, actor_name: str, task_id: int) -> bool:
    """Email an assignee about a task. Failures are logged and never raised.

    Returns True when the message was handed to the mail backend.
    """
    if not get_setting("EMAIL_NOTIFICATIONS_ENABLED"):
        logger.debug("Email notifications disabled; skipping mail to %s", to)
        return False
    if not to:
        logger.info("No email address for assignee of task %s; skipping", task_id)
        return False

    app_url = get_setting("APP_URL").rstrip("/")
    body = (
        f"Hi {assignee_name},\n\n"
        f"{actor_name} assigned a task to you:\n\n"
        f"    {task_title}\n\n"
        f"View it at {app_url}/tasks/{task_id}\n"
    )
    try:
        send_mail(
            subject=f"Task assigned: {task_title}",
            message=body,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[to],
        )
    except Exception:
        logger.exception("Failed to send assignment email for task %s to %s", task_id, to)
        return False
    return True
