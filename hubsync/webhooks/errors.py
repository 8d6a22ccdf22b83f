"""Rejections raised while accepting an inbound webhook delivery.

Each error carries the HTTP status the receiver answers with, so the Falcon
error handler can translate them without a lookup table.
"""

from __future__ import annotations

from http import HTTPStatus


class WebhookRejectedError(Exception):
    """Base class for deliveries refused before persistence."""

    status: HTTPStatus = HTTPStatus.BAD_REQUEST
    title: str = "Webhook rejected"

    def __init__(self, description: str) -> None:
        """Record a short, client-safe description."""
        self.description = description
        super().__init__(description)


class MissingWebhookHeaderError(WebhookRejectedError):
    """A required GitHub header was absent or blank."""

    title = "Missing webhook header"

    def __init__(self, header: str) -> None:
        """Name the missing header."""
        self.header = header
        super().__init__(f"{header} header is required")


class InvalidWebhookPayloadError(WebhookRejectedError):
    """The body is not a JSON object."""

    title = "Invalid webhook payload"

    @classmethod
    def not_json(cls) -> InvalidWebhookPayloadError:
        """Return an error for bodies that fail to decode."""
        return cls("body is not valid JSON")

    @classmethod
    def not_object(cls) -> InvalidWebhookPayloadError:
        """Return an error for JSON bodies that are not objects."""
        return cls("body must be a JSON object")


class InvalidWebhookSignatureError(WebhookRejectedError):
    """The HMAC signature is missing, malformed or does not match."""

    status = HTTPStatus.UNAUTHORIZED
    title = "Invalid webhook signature"

    @classmethod
    def missing(cls) -> InvalidWebhookSignatureError:
        """Return an error for an absent signature header."""
        return cls("X-Hub-Signature-256 header is required")

    @classmethod
    def malformed(cls) -> InvalidWebhookSignatureError:
        """Return an error for a header without the sha256= prefix."""
        return cls("signature must use the sha256= scheme")

    @classmethod
    def mismatch(cls) -> InvalidWebhookSignatureError:
        """Return an error for a digest that does not match the body."""
        return cls("signature does not match payload")


class WebhookSecretMissingError(WebhookRejectedError):
    """No shared secret is configured, so nothing can be verified."""

    status = HTTPStatus.INTERNAL_SERVER_ERROR
    title = "Webhook secret not configured"

    def __init__(self) -> None:
        """Use a fixed description naming the variable to set."""
        super().__init__("HUBSYNC_GITHUB_WEBHOOK_SECRET is not configured")
