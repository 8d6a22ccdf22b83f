"""Unit tests for hubsync.api.app application factory.

Usage
-----
Run with pytest::

    pytest tests/unit/test_api_app.py

"""

from __future__ import annotations

import asyncio
import datetime as dt
import json
import typing as typ

import falcon
import falcon.asgi
import falcon.testing
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from hubsync.api.app import AppDependencies, create_app
from hubsync.api.health.resources import ReadyResource
from hubsync.bootstrap import SyncJob, SyncJobState
from hubsync.bronze import RawWebhookEvent, WebhookProcessState
from hubsync.config import WEBHOOK_PATH, WebhookConfig
from hubsync.webhooks import sign_payload

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

SECRET = "topsecret"
T0 = dt.datetime(2024, 7, 1, 12, 0, tzinfo=dt.UTC)


def _delivery_headers(body: bytes, delivery_id: str = "d-1") -> dict[str, str]:
    return {
        "X-GitHub-Event": "pull_request",
        "X-GitHub-Delivery": delivery_id,
        "X-Hub-Signature-256": sign_payload(SECRET, body),
        "Content-Type": "application/json",
    }


@pytest.fixture
def health_client() -> falcon.testing.TestClient:
    """Build a test client for health-only mode."""
    return falcon.testing.TestClient(create_app())


@pytest.fixture
def full_client(
    loopless_session_factory: async_sessionmaker[AsyncSession],
) -> falcon.testing.TestClient:
    """Build a test client backed by a real SQLite database."""
    deps = AppDependencies(
        session_factory=loopless_session_factory,
        webhook_config=WebhookConfig(secret=SECRET),
    )
    return falcon.testing.TestClient(create_app(deps))


def _add_job(
    session_factory: async_sessionmaker[AsyncSession], **overrides: typ.Any
) -> None:
    values: dict[str, typ.Any] = {
        "lock_key": "repo-bootstrap:42:1001",
        "installation_id": 42,
        "repository_id": 1001,
        "full_name": "acme/widgets",
        "state": SyncJobState.RUNNING.value,
        "current_step": "pull_requests",
        "completed_steps": ["repository_meta", "branches"],
        "summary": {"repository_meta": 1, "branches": 3},
        "items_fetched": 4,
        "attempt_count": 1,
        "started_at": T0,
        "updated_at": T0,
    }
    values.update(overrides)

    async def _insert() -> None:
        async with session_factory() as session, session.begin():
            session.add(SyncJob(**values))

    asyncio.run(_insert())


class TestCreateAppHealthOnly:
    """Tests for create_app() without dependencies."""

    def test_returns_falcon_app(self) -> None:
        """create_app() returns a Falcon ASGI App."""
        assert isinstance(create_app(), falcon.asgi.App)

    def test_health_and_ready(self, health_client: falcon.testing.TestClient) -> None:
        """Both health routes answer 200 without a database."""
        health = health_client.simulate_get("/health")
        ready = health_client.simulate_get("/ready")

        assert health.status == falcon.HTTP_200
        assert health.json == {"status": "ok"}
        assert ready.status == falcon.HTTP_200
        assert ready.json == {"status": "ready"}

    def test_webhook_not_registered(
        self, health_client: falcon.testing.TestClient
    ) -> None:
        """Without dependencies the webhook endpoint does not exist."""
        result = health_client.simulate_post(WEBHOOK_PATH, body=b"{}")

        assert result.status == falcon.HTTP_404


class TestWebhookEndpoint:
    """Tests for POST /api/github/webhook."""

    def test_accepts_signed_delivery(
        self,
        full_client: falcon.testing.TestClient,
        loopless_session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """A signed delivery is stored pending and acknowledged."""
        body = json.dumps({"action": "opened", "installation": {"id": 42}}).encode()

        result = full_client.simulate_post(
            WEBHOOK_PATH, body=body, headers=_delivery_headers(body)
        )

        assert result.status == falcon.HTTP_200
        assert result.json == {"ok": True, "deliveryId": "d-1", "duplicate": False}

        async def _load() -> list[RawWebhookEvent]:
            async with loopless_session_factory() as session:
                return list((await session.scalars(select(RawWebhookEvent))).all())

        events = asyncio.run(_load())
        assert [event.process_state for event in events] == [
            WebhookProcessState.PENDING.value
        ]

    def test_redelivery_reports_duplicate(
        self, full_client: falcon.testing.TestClient
    ) -> None:
        """The same delivery id is acknowledged again as a duplicate."""
        body = b'{"zen": "Keep it logically awesome."}'
        headers = _delivery_headers(body, "d-zen")

        full_client.simulate_post(WEBHOOK_PATH, body=body, headers=headers)
        again = full_client.simulate_post(WEBHOOK_PATH, body=body, headers=headers)

        assert again.status == falcon.HTTP_200
        assert again.json["duplicate"] is True

    def test_bad_signature_is_unauthorized(
        self, full_client: falcon.testing.TestClient
    ) -> None:
        """A forged signature answers 401 with a JSON description."""
        body = b'{"action": "opened"}'
        headers = _delivery_headers(body)
        headers["X-Hub-Signature-256"] = sign_payload("wrong", body)

        result = full_client.simulate_post(WEBHOOK_PATH, body=body, headers=headers)

        assert result.status == falcon.HTTP_401
        assert result.json == {
            "title": "Invalid webhook signature",
            "description": "signature does not match payload",
        }

    def test_missing_event_header_is_bad_request(
        self, full_client: falcon.testing.TestClient
    ) -> None:
        """A delivery without X-GitHub-Event answers 400."""
        body = b"{}"
        headers = _delivery_headers(body)
        del headers["X-GitHub-Event"]

        result = full_client.simulate_post(WEBHOOK_PATH, body=body, headers=headers)

        assert result.status == falcon.HTTP_400
        assert result.json["title"] == "Missing webhook header"

    def test_unconfigured_secret_is_server_error(
        self, loopless_session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """No configured secret answers 500 rather than accepting anything."""
        client = falcon.testing.TestClient(
            create_app(AppDependencies(session_factory=loopless_session_factory))
        )
        body = b"{}"

        result = client.simulate_post(
            WEBHOOK_PATH, body=body, headers=_delivery_headers(body)
        )

        assert result.status == falcon.HTTP_500


class TestOpsEndpoints:
    """Tests for the sync job progress and ops snapshot endpoints."""

    def test_sync_job_progress(
        self,
        full_client: falcon.testing.TestClient,
        loopless_session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """Progress exposes step names and counts only."""
        _add_job(loopless_session_factory, last_error="x" * 900)

        result = full_client.simulate_get("/api/sync-jobs/42/1001")

        assert result.status == falcon.HTTP_200
        body = result.json
        assert body["lockKey"] == "repo-bootstrap:42:1001"
        assert body["state"] == "running"
        assert body["currentStep"] == "pull_requests"
        assert body["completedSteps"] == ["repository_meta", "branches"]
        assert body["summary"] == {"repository_meta": 1, "branches": 3}
        assert body["itemsFetched"] == 4
        assert len(body["lastError"]) == 500

    def test_unknown_sync_job_is_not_found(
        self, full_client: falcon.testing.TestClient
    ) -> None:
        """A repository that was never connected answers 404."""
        result = full_client.simulate_get("/api/sync-jobs/42/9999")

        assert result.status == falcon.HTTP_404
        assert result.json["title"] == "Sync job not found"

    def test_snapshot_lists_stuck_jobs(
        self,
        full_client: falcon.testing.TestClient,
        loopless_session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """Running jobs untouched for longer than the threshold are stuck."""
        _add_job(loopless_session_factory)

        result = full_client.simulate_get(
            "/api/ops/snapshot", params={"stuck_minutes": "5"}
        )

        assert result.status == falcon.HTTP_200
        snapshot = result.json
        assert snapshot["job_counts"]["running"] == 1
        assert snapshot["webhook_counts"]["dead_letter"] == 0
        assert [job["lock_key"] for job in snapshot["stuck_jobs"]] == [
            "repo-bootstrap:42:1001"
        ]

    @pytest.mark.parametrize("raw", ["soon", "0"])
    def test_snapshot_rejects_bad_threshold(
        self, full_client: falcon.testing.TestClient, raw: str
    ) -> None:
        """The stuck threshold must be a positive integer."""
        result = full_client.simulate_get(
            "/api/ops/snapshot", params={"stuck_minutes": raw}
        )

        assert result.status == falcon.HTTP_400
        assert result.json["field"] == "stuck_minutes"


class TestReadiness:
    """Tests for the database-backed readiness check."""

    def test_ready_with_reachable_database(
        self, full_client: falcon.testing.TestClient
    ) -> None:
        """A working database reports ready."""
        result = full_client.simulate_get("/ready")

        assert result.status == falcon.HTTP_200
        assert result.json == {"status": "ready"}

    @pytest.mark.asyncio
    async def test_unreachable_database_is_unavailable(self) -> None:
        """A failing SELECT 1 turns readiness into 503."""
        engine = create_async_engine("sqlite+aiosqlite:////nonexistent/dir/db.sqlite")
        resource = ReadyResource(async_sessionmaker(engine))
        resp = falcon.asgi.Response()

        await resource.on_get(typ.cast("falcon.asgi.Request", None), resp)
        await engine.dispose()

        assert resp.status_code == 503
        assert resp.media == {"status": "unavailable"}
