"""Unit tests for GitHub App JWT signing and installation token exchange."""

from __future__ import annotations

import datetime as dt
import json

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from hubsync.github import (
    GitHubAppConfig,
    GitHubAppTokenError,
    GitHubConfigError,
    InstallationTokenClient,
)
from hubsync.github.app import create_app_jwt
from tests.helpers.fakes import API_URL, FIXED_NOW


@pytest.fixture(scope="module")
def rsa_key() -> rsa.RSAPrivateKey:
    """Generate one signing key for the module."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def app_config(rsa_key: rsa.RSAPrivateKey) -> GitHubAppConfig:
    """Return an app config holding the PEM of ``rsa_key``."""
    pem = rsa_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    return GitHubAppConfig(app_id="12345", private_key=pem, api_url=API_URL)


def test_app_jwt_is_backdated_and_short_lived(
    app_config: GitHubAppConfig, rsa_key: rsa.RSAPrivateKey
) -> None:
    """The JWT is RS256 signed, issued a minute early and valid ten minutes."""
    token = create_app_jwt(app_config, now=FIXED_NOW)

    claims = jwt.decode(
        token,
        rsa_key.public_key(),
        algorithms=["RS256"],
        options={"verify_exp": False, "verify_iat": False},
    )
    now_s = int(FIXED_NOW.timestamp())
    assert claims == {"iat": now_s - 60, "exp": now_s + 600, "iss": "12345"}


def test_unusable_private_key_is_a_config_error() -> None:
    """A key that cannot sign raises GitHubConfigError."""
    config = GitHubAppConfig(app_id="1", private_key="not a key")

    with pytest.raises(GitHubConfigError):
        create_app_jwt(config, now=FIXED_NOW)


def test_app_config_from_env_expands_escaped_newlines(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Single-line secrets with literal \\n are turned back into PEM lines."""
    monkeypatch.setenv("HUBSYNC_GITHUB_APP_ID", "99")
    monkeypatch.setenv("HUBSYNC_GITHUB_APP_PRIVATE_KEY", "line1\\nline2")
    monkeypatch.delenv("HUBSYNC_GITHUB_API_URL", raising=False)

    config = GitHubAppConfig.from_env()

    assert config.private_key == "line1\nline2"
    assert config.api_url == "https://api.github.com"


def test_app_config_requires_app_id(monkeypatch: pytest.MonkeyPatch) -> None:
    """A missing app id names the variable to set."""
    monkeypatch.delenv("HUBSYNC_GITHUB_APP_ID", raising=False)

    with pytest.raises(GitHubConfigError, match="HUBSYNC_GITHUB_APP_ID"):
        GitHubAppConfig.from_env()


@pytest.mark.asyncio
async def test_exchange_posts_bearer_jwt(app_config: GitHubAppConfig) -> None:
    """The exchange POSTs to the installation endpoint with the app JWT."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            201, json={"token": "ghs_minted", "expires_at": "2024-07-01T13:00:00Z"}
        )

    client = InstallationTokenClient(
        app_config,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        clock=lambda: FIXED_NOW,
    )

    minted = await client.create_installation_token(42)

    assert minted.token == "ghs_minted"
    assert minted.expires_at == dt.datetime(2024, 7, 1, 13, 0, tzinfo=dt.UTC)
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/app/installations/42/access_tokens"
    assert seen[0].headers["Authorization"].startswith("Bearer ")


@pytest.mark.parametrize(
    ("status", "body"),
    [(404, {"message": "Not Found"}), (201, {"token": "x"}), (201, ["nope"])],
    ids=["http-error", "missing-expiry", "not-object"],
)
@pytest.mark.asyncio
async def test_exchange_failures(
    app_config: GitHubAppConfig, status: int, body: object
) -> None:
    """Non-2xx answers and malformed bodies raise GitHubAppTokenError."""
    transport = httpx.MockTransport(
        lambda _request: httpx.Response(status, content=json.dumps(body).encode())
    )
    client = InstallationTokenClient(
        app_config, http_client=httpx.AsyncClient(transport=transport)
    )

    with pytest.raises(GitHubAppTokenError) as excinfo:
        await client.create_installation_token(42)

    if status >= 400:
        assert excinfo.value.status_code == status


@pytest.mark.asyncio
async def test_exchange_rejects_non_json_body(app_config: GitHubAppConfig) -> None:
    """An HTML error page with a 2xx status is a malformed token response."""
    transport = httpx.MockTransport(
        lambda _request: httpx.Response(201, content=b"<html>gateway</html>")
    )
    client = InstallationTokenClient(
        app_config, http_client=httpx.AsyncClient(transport=transport)
    )

    with pytest.raises(GitHubAppTokenError, match="malformed"):
        await client.create_installation_token(42)
