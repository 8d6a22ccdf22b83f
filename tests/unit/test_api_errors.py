"""Unit tests for hubsync.api.errors handlers.

Usage
-----
Run with pytest::

    pytest tests/unit/test_api_errors.py

"""

from __future__ import annotations

from http import HTTPStatus

import falcon.asgi
import falcon.testing
import pytest

from hubsync.api.errors import (
    InvalidInputError,
    handle_invalid_input,
    handle_sync_job_not_found,
    handle_webhook_rejected,
)
from hubsync.bootstrap.errors import SyncJobNotFoundError
from hubsync.webhooks.errors import (
    InvalidWebhookSignatureError,
    MissingWebhookHeaderError,
    WebhookRejectedError,
    WebhookSecretMissingError,
)


class _RaisingResource:
    """Resource raising whatever exception it was built with."""

    def __init__(self, error: Exception) -> None:
        self._error = error

    async def on_get(
        self, req: falcon.asgi.Request, resp: falcon.asgi.Response
    ) -> None:
        raise self._error


@pytest.fixture
def client() -> falcon.testing.TestClient:
    """Build a test client with the hubsync error handlers registered."""
    app = falcon.asgi.App()
    routes: dict[str, Exception] = {
        "/missing-job": SyncJobNotFoundError("repo-bootstrap:42:1001"),
        "/bad-signature": InvalidWebhookSignatureError.mismatch(),
        "/missing-header": MissingWebhookHeaderError("X-GitHub-Event"),
        "/no-secret": WebhookSecretMissingError(),
        "/bad-input": InvalidInputError("must be positive"),
        "/bad-field": InvalidInputError("must be positive", field="stuck_minutes"),
    }
    for path, error in routes.items():
        app.add_route(path, _RaisingResource(error))
    app.add_error_handler(WebhookRejectedError, handle_webhook_rejected)
    app.add_error_handler(SyncJobNotFoundError, handle_sync_job_not_found)
    app.add_error_handler(InvalidInputError, handle_invalid_input)
    return falcon.testing.TestClient(app)


def test_sync_job_not_found_is_404(client: falcon.testing.TestClient) -> None:
    """A missing job maps to 404 naming the lock key."""
    result = client.simulate_get("/missing-job")

    assert result.status_code == HTTPStatus.NOT_FOUND
    assert result.json["title"] == "Sync job not found"
    assert "repo-bootstrap:42:1001" in result.json["description"]


@pytest.mark.parametrize(
    ("path", "status", "title"),
    [
        ("/bad-signature", HTTPStatus.UNAUTHORIZED, "Invalid webhook signature"),
        ("/missing-header", HTTPStatus.BAD_REQUEST, "Missing webhook header"),
        (
            "/no-secret",
            HTTPStatus.INTERNAL_SERVER_ERROR,
            "Webhook secret not configured",
        ),
    ],
)
def test_webhook_rejections_use_their_own_status(
    client: falcon.testing.TestClient, path: str, status: HTTPStatus, title: str
) -> None:
    """Each rejection answers with the status and title it carries."""
    result = client.simulate_get(path)

    assert result.status_code == status
    assert result.json["title"] == title


def test_missing_header_description_names_header(
    client: falcon.testing.TestClient,
) -> None:
    """The description tells the sender which header to add."""
    result = client.simulate_get("/missing-header")

    assert result.json["description"] == "X-GitHub-Event header is required"


class TestInvalidInput:
    """InvalidInputError and its handler."""

    def test_returns_400_without_field(
        self, client: falcon.testing.TestClient
    ) -> None:
        """The field key is omitted when no field was named."""
        result = client.simulate_get("/bad-input")

        assert result.status_code == HTTPStatus.BAD_REQUEST
        assert result.json == {
            "title": "Invalid input",
            "description": "must be positive",
        }

    def test_includes_field_when_set(self, client: falcon.testing.TestClient) -> None:
        """The offending field is reported alongside the reason."""
        result = client.simulate_get("/bad-field")

        assert result.json["field"] == "stuck_minutes"
        assert result.json["description"] == "must be positive"

    def test_message_prefixes_field(self) -> None:
        """The exception text carries the field prefix."""
        assert str(InvalidInputError("bad value")) == "bad value"
        assert str(InvalidInputError("bad value", field="name")) == "name: bad value"
