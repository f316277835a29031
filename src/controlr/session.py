"""Ayla device-cloud session.

A :class:`Session` owns the credential-to-token exchange, the token
fields and their proactive renewal, and issues bearer-authenticated
requests for the higher layers::

    async with Session(app_id="...", app_secret="...") as session:
        await session.authenticate("email@example.com", "password")
        profile = await session.authorized_request("GET", "/users/get_user_profile")

        # Called periodically; only talks to the cloud inside the grace period.
        await session.refresh_if_needed()

Tokens live on the instance, so independent sessions can coexist in one
process.  Nothing is persisted: every process run signs in again.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime
from types import TracebackType
from typing import Any
from urllib.parse import quote

import aiohttp

from controlr._constants import (
    APP_HEADERS,
    DEFAULT_REGION,
    PATH_REFRESH_TOKEN,
    PATH_SIGN_IN,
    REFRESH_TOKEN_GRACE_PERIOD,
    REQUEST_TIMEOUT,
    SERVICE_DOMAINS,
)

_LOGGER = logging.getLogger(__name__)


def _describe(message: str, status: int | None, reason: str | None) -> str:
    if status is None:
        return message
    prefix = f"{status} {reason}" if reason else str(status)
    return f"{prefix}: {message}"


class ControlRError(Exception):
    """Base class for every error raised by :mod:`controlr`."""

    def __init__(
        self, message: str, *, status: int | None = None, reason: str | None = None
    ) -> None:
        super().__init__(_describe(message, status, reason))
        self.message = message
        self.status = status
        self.reason = reason


class AuthError(ControlRError):
    """Raised when signing in or refreshing the access token fails.

    ``status`` is the HTTP status of the rejected exchange, or ``None``
    when the request never got a response (network error, timeout).
    """


class RefreshTokenRejectedError(AuthError):
    """Raised when the cloud answers a token refresh with 401.

    The refresh token has been dropped; :meth:`Session.authenticate` must
    be called again before the session can be renewed.
    """


class ApiError(ControlRError):
    """Raised when an authorized API call fails."""


class MissingTokenError(ApiError):
    """Raised, without any network I/O, when the session holds no access token."""


class HttpError(ApiError):
    """Raised when the cloud answers with an unexpected HTTP status."""


class ProtocolError(ApiError):
    """Raised when a response body does not have the expected shape."""


class Session:
    """Authenticated session against the Ayla device cloud.

    Args:
        region: Service region (``"us"``, ``"eu"`` or ``"cn"``).
        base_url: Full service URL; overrides *region*.
        app_id: Ayla application id sent when signing in.
        app_secret: Ayla application secret sent when signing in.
        http: Optional :class:`aiohttp.ClientSession` to use.  An injected
            session is left open by :meth:`close`.
    """

    def __init__(
        self,
        *,
        region: str = DEFAULT_REGION,
        base_url: str | None = None,
        app_id: str = "",
        app_secret: str = "",
        http: aiohttp.ClientSession | None = None,
    ) -> None:
        if base_url is None:
            try:
                base_url = SERVICE_DOMAINS[region]
            except KeyError:
                raise ValueError(
                    f"Unknown region '{region}'. Expected: {' | '.join(SERVICE_DOMAINS)}"
                ) from None
        self._base_url = base_url.rstrip("/")
        self._app_id = app_id
        self._app_secret = app_secret
        self._http = http
        self._owns_http = http is None
        self._access_token: str | None = None
        self._refresh_token: str | None = None
        self._expires_at: float | None = None
        self._refresh_lock = asyncio.Lock()

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        """Service URL requests are sent to."""
        return self._base_url

    @property
    def access_token(self) -> str | None:
        """Current bearer token, or ``None`` when not signed in."""
        return self._access_token

    @property
    def refresh_token(self) -> str | None:
        """Token used to renew :attr:`access_token`."""
        return self._refresh_token

    @property
    def expires_at(self) -> float | None:
        """Unix timestamp at which :attr:`access_token` expires."""
        return self._expires_at

    @property
    def is_authenticated(self) -> bool:
        """True while an access token is held."""
        return bool(self._access_token)

    def invalidate(self) -> None:
        """Forget all tokens."""
        self._access_token = None
        self._refresh_token = None
        self._expires_at = None

    async def close(self) -> None:
        """Close the HTTP session if this instance created it."""
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    async def authenticate(self, email: str, password: str) -> None:
        """Exchange account credentials for a fresh set of tokens.

        On failure the session is left unauthenticated and
        :class:`AuthError` is raised.  Waits for any refresh in flight, so
        the tokens stored last are always the ones from this sign-in.
        """
        _LOGGER.debug("Signing in as %s", email)
        body = {
            "user": {
                "email": email,
                "password": password,
                "application": {"app_id": self._app_id, "app_secret": self._app_secret},
            }
        }
        async with self._refresh_lock:
            try:
                data = await self._exchange(PATH_SIGN_IN, body)
                self._store_tokens(data)
            except AuthError:
                self.invalidate()
                raise

    async def refresh_if_needed(self) -> None:
        """Renew the access token when it expires within the grace period.

        Does nothing when no refresh token is held or the current token is
        still valid for longer than the grace period.  A 401 answer drops
        the refresh token and raises :class:`RefreshTokenRejectedError`;
        later calls are then no-ops until :meth:`authenticate` succeeds.
        """
        if self._refresh_not_needed():
            return

        async with self._refresh_lock:
            # Another task may have refreshed while we were waiting.
            if self._refresh_not_needed():
                return

            _LOGGER.debug("Refreshing access token")
            try:
                data = await self._exchange(
                    PATH_REFRESH_TOKEN, {"user": {"refresh_token": self._refresh_token}}
                )
            except AuthError as e:
                if e.status == 401:
                    self._refresh_token = None
                    raise RefreshTokenRejectedError(
                        e.message, status=e.status, reason=e.reason
                    ) from e
                raise
            self._store_tokens(data)

    def _refresh_not_needed(self) -> bool:
        if not self._refresh_token:
            _LOGGER.warning("Token refresh skipped: no refresh token")
            return True
        exp = self._expires_at
        if exp is not None and exp - REFRESH_TOKEN_GRACE_PERIOD > time.time():
            _LOGGER.debug(
                "Token refresh skipped: access token expires on %s", _format_ts(exp)
            )
            return True
        return False

    async def _exchange(self, path: str, body: dict[str, object]) -> Any:
        """POST to a token endpoint and return the decoded 200 body."""
        try:
            status, reason, text = await self._request("POST", path, body=body)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise AuthError(f"Token exchange failed: {e!r}") from e
        if status != 200:
            raise AuthError(_error_detail(text), status=status, reason=reason)
        try:
            return _parse_body(text)
        except ValueError:
            raise AuthError("Token response is not JSON", status=status) from None

    def _store_tokens(self, data: Any) -> None:
        if not isinstance(data, dict):
            raise AuthError("Malformed token response")
        access = data.get("access_token")
        refresh = data.get("refresh_token")
        expires_in = data.get("expires_in")
        if not isinstance(access, str) or not access or not isinstance(expires_in, (int, float)):
            raise AuthError("Malformed token response")
        self._access_token = access
        self._refresh_token = refresh if isinstance(refresh, str) else None
        self._expires_at = time.time() + expires_in
        _LOGGER.info("Updated token expiring on %s", _format_ts(self._expires_at))

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def authorized_request(
        self,
        method: str,
        path: str,
        *,
        path_vars: dict[str, object] | None = None,
        body: dict[str, object] | None = None,
        query: dict[str, str] | None = None,
        expected_status: int | None = None,
    ) -> Any:
        """Send a bearer-authenticated request and return the decoded body.

        Args:
            method: HTTP verb.
            path: Path template, e.g. ``/apiv1/dsns/{dsn}``.
            path_vars: Values substituted (URL-quoted) into *path*.
            body: JSON request body.
            query: Query-string parameters.
            expected_status: Only this status counts as success.  By
                default any 2xx status does.

        Returns:
            The decoded JSON body, or ``None`` if the body is empty.

        Raises:
            MissingTokenError: No access token is held.  No request is sent.
            HttpError: The response status is not a success.
            ProtocolError: A successful response body is not JSON.
            ApiError: The request failed in transport (network, timeout).
        """
        token = self._access_token
        if not token:
            raise MissingTokenError(f"Missing access token, skipped {method} {path}")
        if path_vars:
            path = path.format(**{k: quote(str(v), safe="") for k, v in path_vars.items()})

        try:
            status, reason, text = await self._request(
                method,
                path,
                headers={"Authorization": f"auth_token {token}"},
                body=body,
                query=query,
            )
        except (aiohttp.ClientError, TimeoutError) as e:
            raise ApiError(f"{method} {path} failed: {e!r}") from e

        if expected_status is not None:
            ok = status == expected_status
        else:
            ok = 200 <= status < 300
        if not ok:
            raise HttpError(_error_detail(text), status=status, reason=reason)
        try:
            return _parse_body(text)
        except ValueError:
            raise ProtocolError(f"{method} {path}: response is not JSON", status=status) from None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        body: dict[str, object] | None = None,
        query: dict[str, str] | None = None,
    ) -> tuple[int, str | None, str]:
        """Send a request and return ``(status, reason, body_text)``."""
        url = f"{self._base_url}{path}"
        _LOGGER.debug("%s %s", method, url)
        if self._http is None:
            self._http = aiohttp.ClientSession()
        async with self._http.request(
            method,
            url,
            json=body,
            params=query,
            headers={**APP_HEADERS, **(headers or {})},
            timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT),
        ) as resp:
            text = await resp.text()
            _LOGGER.debug("%s %s -> %s", method, url, resp.status)
            return resp.status, resp.reason, text


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _parse_body(text: str) -> Any:
    """Decode a JSON body; ``None`` for an empty one.

    Raises :class:`ValueError` when the body is not JSON.
    """
    if not text.strip():
        return None
    return json.loads(text)


def _error_detail(text: str) -> str:
    """Extract the ``error`` message from an error response body."""
    try:
        data = _parse_body(text)
    except ValueError:
        return text.strip() or "unknown error"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return "unknown error"


def _format_ts(ts: float) -> str:
    return datetime.fromtimestamp(ts).isoformat(timespec="seconds")
