"""Tests for controlr.session."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import aiohttp
import pytest
from aioresponses import aioresponses

from controlr._constants import PATH_REFRESH_TOKEN, SERVICE_DOMAINS
from controlr.session import (
    ApiError,
    AuthError,
    HttpError,
    MissingTokenError,
    ProtocolError,
    RefreshTokenRejectedError,
    Session,
)

BASE = SERVICE_DOMAINS["us"]
SIGN_IN_URL = f"{BASE}/users/sign_in"
REFRESH_URL = f"{BASE}/users/refresh_token"
PROFILE_URL = f"{BASE}/users/get_user_profile"


def _tokens(suffix: str = "1", expires_in: int = 86400) -> dict[str, Any]:
    return {
        "access_token": f"access-{suffix}",
        "refresh_token": f"refresh-{suffix}",
        "expires_in": expires_in,
    }


def _calls(m: aioresponses, method: str, url: str) -> list[Any]:
    """All recorded calls for *method* on *url* (query string ignored)."""
    return [
        call
        for (meth, req_url), calls in m.requests.items()
        if meth == method and str(req_url.with_query(None)) == url
        for call in calls
    ]


async def _sign_in(session: Session, m: aioresponses, expires_in: int = 86400) -> None:
    m.post(SIGN_IN_URL, payload=_tokens("1", expires_in))
    await session.authenticate("me@example.com", "secret")


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestSessionInit:
    def test_default_region_is_us(self):
        assert Session().base_url == BASE

    def test_eu_region(self):
        assert Session(region="eu").base_url == SERVICE_DOMAINS["eu"]

    def test_base_url_overrides_region(self):
        assert Session(region="eu", base_url="http://localhost:8080/").base_url == (
            "http://localhost:8080"
        )

    def test_unknown_region(self):
        with pytest.raises(ValueError, match="Unknown region 'mars'"):
            Session(region="mars")

    def test_starts_unauthenticated(self):
        s = Session()
        assert s.is_authenticated is False
        assert s.access_token is None
        assert s.refresh_token is None
        assert s.expires_at is None

    async def test_injected_http_session_is_not_closed(self):
        async with aiohttp.ClientSession() as http:
            s = Session(http=http)
            await s.close()
            assert http.closed is False

    async def test_context_manager_closes_owned_http(self):
        with aioresponses() as m:
            async with Session() as s:
                await _sign_in(s, m)
                http = s._http
                assert http is not None
        assert http.closed is True


# ---------------------------------------------------------------------------
# authenticate
# ---------------------------------------------------------------------------


class TestAuthenticate:
    async def test_stores_tokens(self, session: Session):
        before = time.time()
        with aioresponses() as m:
            await _sign_in(session, m, expires_in=3600)

        assert session.is_authenticated is True
        assert session.access_token == "access-1"
        assert session.refresh_token == "refresh-1"
        assert session.expires_at is not None
        assert before + 3600 <= session.expires_at <= time.time() + 3600

    async def test_sends_credentials_and_application(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m)
            (call,) = _calls(m, "POST", SIGN_IN_URL)

        assert call.kwargs["json"] == {
            "user": {
                "email": "me@example.com",
                "password": "secret",
                "application": {"app_id": "app-id", "app_secret": "app-secret"},
            }
        }
        assert "Authorization" not in call.kwargs["headers"]

    async def test_rejected_credentials(self, session: Session):
        with aioresponses() as m:
            m.post(SIGN_IN_URL, status=401, payload={"error": "Invalid email or password"})
            with pytest.raises(AuthError, match="Invalid email or password") as exc_info:
                await session.authenticate("me@example.com", "wrong")

        assert exc_info.value.status == 401
        assert str(exc_info.value).startswith("401")
        assert session.is_authenticated is False

    async def test_failure_clears_previous_tokens(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m)
            m.post(SIGN_IN_URL, status=500)
            with pytest.raises(AuthError):
                await session.authenticate("me@example.com", "secret")

        assert session.access_token is None
        assert session.refresh_token is None
        assert session.expires_at is None

    async def test_network_error(self, session: Session):
        with aioresponses() as m:
            m.post(SIGN_IN_URL, exception=aiohttp.ClientConnectionError("offline"))
            with pytest.raises(AuthError) as exc_info:
                await session.authenticate("me@example.com", "secret")

        assert exc_info.value.status is None
        assert session.is_authenticated is False

    async def test_malformed_token_response(self, session: Session):
        with aioresponses() as m:
            m.post(SIGN_IN_URL, payload={"refresh_token": "r"})
            with pytest.raises(AuthError, match="Malformed token response"):
                await session.authenticate("me@example.com", "secret")

        assert session.is_authenticated is False


# ---------------------------------------------------------------------------
# refresh_if_needed
# ---------------------------------------------------------------------------


class TestRefreshIfNeeded:
    async def test_noop_without_refresh_token(self, session: Session):
        with aioresponses() as m:
            await session.refresh_if_needed()
            assert m.requests == {}

    async def test_noop_when_token_outlives_grace_period(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m, expires_in=13 * 3600)
            await session.refresh_if_needed()
            assert _calls(m, "POST", REFRESH_URL) == []

        assert session.access_token == "access-1"

    async def test_refreshes_inside_grace_period(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m, expires_in=11 * 3600)
            m.post(REFRESH_URL, payload=_tokens("2"))
            await session.refresh_if_needed()
            (call,) = _calls(m, "POST", REFRESH_URL)

        assert call.kwargs["json"] == {"user": {"refresh_token": "refresh-1"}}
        assert session.access_token == "access-2"
        assert session.refresh_token == "refresh-2"
        assert session.expires_at is not None
        assert session.expires_at > time.time() + 23 * 3600

    async def test_401_clears_refresh_token(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m, expires_in=60)
            m.post(REFRESH_URL, status=401, payload={"error": "Your refresh token is invalid"})
            with pytest.raises(RefreshTokenRejectedError) as exc_info:
                await session.refresh_if_needed()

            assert exc_info.value.status == 401
            assert session.refresh_token is None

            # Now a no-op: no second refresh request is made.
            await session.refresh_if_needed()
            assert len(_calls(m, "POST", REFRESH_URL)) == 1

    async def test_authenticate_rearms_refresh(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m, expires_in=60)
            m.post(REFRESH_URL, status=401)
            with pytest.raises(RefreshTokenRejectedError):
                await session.refresh_if_needed()

            await _sign_in(session, m, expires_in=60)
            m.post(REFRESH_URL, payload=_tokens("3"))
            await session.refresh_if_needed()

        assert session.access_token == "access-3"

    async def test_server_error_keeps_refresh_token(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m, expires_in=60)
            m.post(REFRESH_URL, status=503)
            with pytest.raises(AuthError) as exc_info:
                await session.refresh_if_needed()

        assert not isinstance(exc_info.value, RefreshTokenRejectedError)
        assert session.refresh_token == "refresh-1"

    async def test_concurrent_calls_refresh_once(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m, expires_in=60)
            # Registered once: a second exchange would fail to connect.
            m.post(REFRESH_URL, payload=_tokens("2"))
            await asyncio.gather(
                session.refresh_if_needed(),
                session.refresh_if_needed(),
                session.refresh_if_needed(),
            )
            assert len(_calls(m, "POST", REFRESH_URL)) == 1

        assert session.access_token == "access-2"

    async def test_sign_in_waits_for_refresh_in_flight(
        self, session: Session, monkeypatch: pytest.MonkeyPatch
    ):
        with aioresponses() as m:
            await _sign_in(session, m, expires_in=60)

        refresh_started = asyncio.Event()
        release = asyncio.Event()

        async def exchange(path: str, body: dict[str, object]) -> dict[str, Any]:
            if path == PATH_REFRESH_TOKEN:
                refresh_started.set()
                await release.wait()
                return _tokens("stale")
            return _tokens("fresh")

        monkeypatch.setattr(session, "_exchange", exchange)

        refresh = asyncio.create_task(session.refresh_if_needed())
        await refresh_started.wait()
        sign_in = asyncio.create_task(session.authenticate("me@example.com", "secret"))
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(refresh, sign_in)

        assert session.access_token == "access-fresh"
        assert session.refresh_token == "refresh-fresh"


# ---------------------------------------------------------------------------
# authorized_request
# ---------------------------------------------------------------------------


class TestAuthorizedRequest:
    async def test_missing_token_makes_no_request(self, session: Session):
        with aioresponses() as m:
            with pytest.raises(MissingTokenError, match="Missing access token"):
                await session.authorized_request("GET", "/users/get_user_profile")
            assert m.requests == {}

    async def test_sends_bearer_header(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m)
            m.get(PROFILE_URL, payload={"uuid": "U1"})
            result = await session.authorized_request("GET", "/users/get_user_profile")
            (call,) = _calls(m, "GET", PROFILE_URL)

        assert result == {"uuid": "U1"}
        assert call.kwargs["headers"]["Authorization"] == "auth_token access-1"
        assert call.kwargs["headers"]["Accept"] == "application/json"

    async def test_path_vars_are_quoted(self, session: Session):
        url = f"{BASE}/apiv1/dsns/AC%2F01/properties/outlet_temperature"
        with aioresponses() as m:
            await _sign_in(session, m)
            m.get(url, payload={"property": {"value": 1}})
            await session.authorized_request(
                "GET",
                "/apiv1/dsns/{dsn}/properties/{name}",
                path_vars={"dsn": "AC/01", "name": "outlet_temperature"},
            )
            assert len(_calls(m, "GET", url)) == 1

    async def test_http_error_carries_status_and_message(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m)
            m.get(PROFILE_URL, status=404, payload={"error": "Not found"})
            with pytest.raises(HttpError, match="Not found") as exc_info:
                await session.authorized_request("GET", "/users/get_user_profile")

        assert exc_info.value.status == 404
        assert exc_info.value.message == "Not found"

    async def test_error_without_body(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m)
            m.get(PROFILE_URL, status=500)
            with pytest.raises(HttpError, match="unknown error"):
                await session.authorized_request("GET", "/users/get_user_profile")

    async def test_401_does_not_invalidate_session(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m)
            m.get(PROFILE_URL, status=401, payload={"error": "Unauthorized"})
            with pytest.raises(HttpError) as exc_info:
                await session.authorized_request("GET", "/users/get_user_profile")

        assert exc_info.value.status == 401
        assert session.access_token == "access-1"
        assert session.refresh_token == "refresh-1"

    async def test_expected_status_mismatch(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m)
            m.post(PROFILE_URL, status=200, payload={})
            with pytest.raises(HttpError) as exc_info:
                await session.authorized_request(
                    "POST", "/users/get_user_profile", expected_status=201
                )

        assert exc_info.value.status == 200

    async def test_empty_body_returns_none(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m)
            m.post(PROFILE_URL, status=201, body="")
            result = await session.authorized_request(
                "POST", "/users/get_user_profile", expected_status=201
            )

        assert result is None

    async def test_non_json_body(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m)
            m.get(PROFILE_URL, body="<html>")
            with pytest.raises(ProtocolError, match="not JSON"):
                await session.authorized_request("GET", "/users/get_user_profile")

    async def test_timeout_is_api_error(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m)
            m.get(PROFILE_URL, exception=asyncio.TimeoutError())
            with pytest.raises(ApiError) as exc_info:
                await session.authorized_request("GET", "/users/get_user_profile")

        assert not isinstance(exc_info.value, HttpError)
        assert exc_info.value.status is None

    async def test_invalidate(self, session: Session):
        with aioresponses() as m:
            await _sign_in(session, m)
        session.invalidate()
        with pytest.raises(MissingTokenError):
            await session.authorized_request("GET", "/users/get_user_profile")
