from __future__ import annotations

import logging

from rest_framework.authentication import BaseAuthentication
from rest_framework.exceptions import AuthenticationFailed

from .administration import provision_user
from .conf import get_setting

logger = logging.getLogger(__name__)


class TrustedHeaderAuthentication(BaseAuthentication):
    """Authenticate with the identity an upstream proxy has already verified.

    Only enable ``TRUST_IDENTITY_HEADERS`` when the service is reachable solely
    through that proxy; the proxy must strip client-supplied copies of the
    headers. First-time identities are provisioned as members.
    """

    def authenticate(self, request):
        if not get_setting("TRUST_IDENTITY_HEADERS"):
            return None

        email = (request.META.get(get_setting("IDENTITY_EMAIL_HEADER")) or "").strip().lower()
        if not email:
            return None

        domain = (get_setting("ALLOWED_EMAIL_DOMAIN") or "").strip().lower()
        if domain and not email.endswith("@" + domain):
            logger.warning("Rejected identity %s outside allowed domain %s", email, domain)
            raise AuthenticationFailed("This account is not allowed to sign in.")

        name = (request.META.get(get_setting("IDENTITY_NAME_HEADER")) or "").strip()
        user = provision_user(email=email, name=name)
        if not user.is_active:
            raise AuthenticationFailed("User is inactive.")
        return (user, None)
