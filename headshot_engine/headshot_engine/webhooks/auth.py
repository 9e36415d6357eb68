"""Webhook authentication.

Verifiers run on the exact raw request bytes before anything is parsed.
Secrets are compared with :func:`hmac.compare_digest` so comparison time
does not depend on how many characters match.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping, Sequence
from typing import Protocol

from pydantic import SecretStr

from headshot_engine.config import EngineSettings

logger = logging.getLogger(__name__)

REPLICATE_SIGNATURE_HEADERS = ("webhook-signature", "x-replicate-signature")
POLAR_SIGNATURE_HEADERS = ("polar-signature", "x-polar-signature")

# Route names accepted under /webhooks/{route}.
WEBHOOK_ROUTES: frozenset[str] = frozenset({"replicate", "runpod", "polar"})


class WebhookVerifier(Protocol):
    """Authenticates a single webhook delivery."""

    def verify(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        query_params: Mapping[str, str],
    ) -> bool:
        ...


def _header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup that also works on plain dicts."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if key.lower() == lowered:
            return val
    return None


def compute_signature(secret: str, raw_body: bytes) -> str:
    """Return the ``sha256=<hex>`` HMAC of *raw_body* under *secret*."""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class HmacSignatureVerifier:
    """HMAC-SHA256 over the raw body, carried in one of several headers.

    The header value may be ``sha256=<hex>`` or the bare hex digest.

    Parameters
    ----------
    secret:
        Shared signing secret.
    header_names:
        Headers checked in order; the first one present is used.
    """

    def __init__(self, secret: SecretStr, header_names: Sequence[str]) -> None:
        self._secret = secret
        self._header_names = tuple(header_names)

    def verify(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        query_params: Mapping[str, str],
    ) -> bool:
        if not raw_body:
            return False

        signature: str | None = None
        for name in self._header_names:
            signature = _header(headers, name)
            if signature:
                break
        if not signature:
            return False

        signature = signature.strip()
        if not signature.startswith("sha256="):
            signature = f"sha256={signature}"
        expected = compute_signature(self._secret.get_secret_value(), raw_body)
        return hmac.compare_digest(expected, signature)


class BearerTokenVerifier:
    """Shared token in ``Authorization: Bearer <token>`` or a ``?token=`` query parameter."""

    def __init__(self, token: SecretStr, query_param: str = "token") -> None:
        self._token = token
        self._query_param = query_param

    def verify(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        query_params: Mapping[str, str],
    ) -> bool:
        expected = self._token.get_secret_value()
        presented: str | None = None

        authorization = _header(headers, "authorization")
        if authorization and authorization.lower().startswith("bearer "):
            presented = authorization[7:].strip()
        if not presented:
            presented = query_params.get(self._query_param)
        if not presented:
            return False
        return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))


class UnauthenticatedVerifier:
    """Accepts every delivery.  Used only when no secret is configured."""

    def __init__(self, route: str) -> None:
        self._route = route

    def verify(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        query_params: Mapping[str, str],
    ) -> bool:
        logger.warning(
            "No webhook secret configured for %s; accepting delivery without verification",
            self._route,
        )
        return True


def build_verifiers(settings: EngineSettings) -> dict[str, WebhookVerifier]:
    """Return the verifier for each webhook route, keyed by route name."""
    verifiers: dict[str, WebhookVerifier] = {}

    if settings.replicate_webhook_secret is not None:
        verifiers["replicate"] = HmacSignatureVerifier(settings.replicate_webhook_secret, REPLICATE_SIGNATURE_HEADERS)
    else:
        verifiers["replicate"] = UnauthenticatedVerifier("replicate")

    if settings.runpod_webhook_token is not None:
        verifiers["runpod"] = BearerTokenVerifier(settings.runpod_webhook_token)
    else:
        verifiers["runpod"] = UnauthenticatedVerifier("runpod")

    if settings.polar_webhook_secret is not None:
        verifiers["polar"] = HmacSignatureVerifier(settings.polar_webhook_secret, POLAR_SIGNATURE_HEADERS)
    else:
        verifiers["polar"] = UnauthenticatedVerifier("polar")

    return verifiers
