"""Errors raised by the GitHub REST client and credential helpers."""

from __future__ import annotations

import enum


class GitHubAPIError(RuntimeError):
    """Raised when GitHub answers with a non-2xx status."""

    def __init__(
        self, message: str, *, status_code: int | None = None, url: str | None = None
    ) -> None:
        """Initialise with a message, the HTTP status and the request URL."""
        self.status_code = status_code
        self.url = url
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int, url: str) -> GitHubAPIError:
        """Return an error for non-2xx HTTP responses."""
        return cls(f"GitHub HTTP {status_code} for {url}", status_code=status_code, url=url)

    @classmethod
    def invalid_body(cls, status_code: int, url: str) -> GitHubAPIError:
        """Return an error for a successful response whose body is not JSON."""
        return cls(
            f"GitHub HTTP {status_code} for {url} returned a non-JSON body",
            status_code=status_code,
            url=url,
        )

    @property
    def is_not_found(self) -> bool:
        """Whether GitHub reported the resource as missing."""
        return self.status_code == 404  # noqa: PLR2004


class GitHubRateLimitError(GitHubAPIError):
    """Raised when GitHub throttles a request.

    ``retry_after_ms`` is the earliest point, relative to the response, at
    which the caller may try again.
    """

    def __init__(self, retry_after_ms: int, *, status_code: int, url: str) -> None:
        """Record the delay GitHub asked for."""
        self.retry_after_ms = retry_after_ms
        super().__init__(
            f"GitHub rate limit hit for {url}; retry after {retry_after_ms}ms",
            status_code=status_code,
            url=url,
        )


class GitHubResponseShapeError(RuntimeError):
    """Raised when a GitHub response body is not the documented shape."""

    @classmethod
    def expected(cls, kind: str, url: str) -> GitHubResponseShapeError:
        """Return an error when the body is not of the expected JSON kind."""
        return cls(f"GitHub response for {url} was not a JSON {kind}")

    @classmethod
    def invalid(cls, kind: str, detail: str) -> GitHubResponseShapeError:
        """Return an error when an item fails schema validation."""
        return cls(f"GitHub {kind} payload is invalid: {detail}")

    @classmethod
    def missing(cls, field: str) -> GitHubResponseShapeError:
        """Return an error for a missing response field."""
        return cls(f"GitHub response missing expected field: {field}")


class GitHubConfigError(RuntimeError):
    """Raised when GitHub credentials or endpoints are not configured."""

    @classmethod
    def missing(cls, env_var: str) -> GitHubConfigError:
        """Return an error naming the absent environment variable."""
        return cls(f"{env_var} is required but not set")

    @classmethod
    def invalid_private_key(cls) -> GitHubConfigError:
        """Return an error when the app key cannot sign a JWT."""
        return cls("GitHub App private key could not be used to sign a JWT")


class GitHubAppTokenError(RuntimeError):
    """Raised when exchanging an app JWT for an installation token fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Store the status returned by the token endpoint."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def exchange_failed(
        cls, installation_id: int, status_code: int
    ) -> GitHubAppTokenError:
        """Return an error for a non-2xx token exchange."""
        return cls(
            f"installation token exchange for {installation_id} failed "
            f"with HTTP {status_code}",
            status_code=status_code,
        )

    @classmethod
    def malformed(cls, installation_id: int) -> GitHubAppTokenError:
        """Return an error when the token response lacks token/expires_at."""
        return cls(f"installation token response for {installation_id} was malformed")


class NoTokenReason(enum.StrEnum):
    """Why no credential could be resolved."""

    NO_USER_TOKEN = "no_user_token"
    NO_INSTALLATION = "no_installation"
    INSTALLATION_UNAVAILABLE = "installation_unavailable"


class NoGitHubTokenError(RuntimeError):
    """Raised when neither a user nor an installation credential is usable.

    ``retryable`` is true only when the credential source could plausibly
    come back, for example a suspended installation being reactivated.
    """

    def __init__(
        self, message: str, *, reason: NoTokenReason, retryable: bool = False
    ) -> None:
        """Record the machine-readable reason and retryability."""
        self.reason = reason
        self.retryable = retryable
        super().__init__(message)

    @classmethod
    def no_user_token(cls, user_id: str) -> NoGitHubTokenError:
        """Return an error for a user without a stored OAuth token."""
        return cls(
            f"user {user_id} has no GitHub OAuth token",
            reason=NoTokenReason.NO_USER_TOKEN,
        )

    @classmethod
    def no_installation(cls) -> NoGitHubTokenError:
        """Return an error when there is no user and no installation to fall back on."""
        return cls(
            "no user token and no installation id available",
            reason=NoTokenReason.NO_INSTALLATION,
        )

    @classmethod
    def installation_unavailable(
        cls, installation_id: int, status_code: int | None
    ) -> NoGitHubTokenError:
        """Return an error for an installation GitHub refuses to mint for.

        A 404 means the installation is gone; anything else (typically 403
        for a suspended installation) may clear up later.
        """
        return cls(
            f"installation {installation_id} is unavailable (HTTP {status_code})",
            reason=NoTokenReason.INSTALLATION_UNAVAILABLE,
            retryable=status_code != 404,  # noqa: PLR2004
        )
