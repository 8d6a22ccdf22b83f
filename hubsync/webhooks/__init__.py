"""Inbound webhook verification and persistence."""

from __future__ import annotations

from .errors import (
    InvalidWebhookPayloadError,
    InvalidWebhookSignatureError,
    MissingWebhookHeaderError,
    WebhookRejectedError,
    WebhookSecretMissingError,
)
from .verify import sign_payload, verify_signature

__all__ = [
    "InvalidWebhookPayloadError",
    "InvalidWebhookSignatureError",
    "MissingWebhookHeaderError",
    "WebhookRejectedError",
    "WebhookSecretMissingError",
    "sign_payload",
    "verify_signature",
]
