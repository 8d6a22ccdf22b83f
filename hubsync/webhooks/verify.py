"""HMAC-SHA256 verification of GitHub webhook signatures."""

from __future__ import annotations

import hashlib
import hmac

from .errors import InvalidWebhookSignatureError

SIGNATURE_PREFIX = "sha256="


def sign_payload(secret: str, body: bytes) -> str:
    """Return the ``X-Hub-Signature-256`` value GitHub would send for ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: str, body: bytes, signature: str | None) -> None:
    """Raise unless ``signature`` is the HMAC of ``body`` under ``secret``.

    The comparison runs in constant time.
    """
    if not signature:
        raise InvalidWebhookSignatureError.missing()
    if not signature.startswith(SIGNATURE_PREFIX):
        raise InvalidWebhookSignatureError.malformed()
    expected = sign_payload(secret, body)
    if not hmac.compare_digest(expected.encode("ascii"), signature.strip().encode()):
        raise InvalidWebhookSignatureError.mismatch()
