from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from src.client.api import APIClient, APIClientError
from src.session.csrf import CSRF_COOKIE, CSRF_HEADER, TokenStore
from src.storage.kv import MemoryStorage


def _client(handler, **kwargs) -> APIClient:
    return APIClient("http://testserver", transport=httpx.MockTransport(handler), **kwargs)


def test_fetch_preferences_unwraps_data_envelope() -> None:
    client = _client(lambda request: httpx.Response(200, json={"success": True, "data": {"theme": "dark"}}))

    assert client.fetch_preferences() == {"theme": "dark"}


def test_unsafe_requests_carry_csrf_header_and_cookie() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "data": json.loads(request.content or b"{}")})

    store = TokenStore(MemoryStorage(), token_factory=lambda: "token-abc")
    client = _client(handler, token_store=store)

    client.request("GET", "/api/preferences")
    assert client.update_preferences({"theme": "dark"}) == {"theme": "dark"}

    assert CSRF_HEADER not in seen[0].headers
    assert seen[1].headers[CSRF_HEADER] == "token-abc"
    assert f"{CSRF_COOKIE}=token-abc" in seen[1].headers["cookie"]


def test_session_cookies_are_shared_with_caller() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    cookies = httpx.Cookies()
    client = _client(handler, cookies=cookies)
    cookies.set("session-timestamp", "1760000000000")

    client.request("GET", "/api/templates")

    assert "session-timestamp=1760000000000" in seen[0].headers["cookie"]


def test_error_envelope_becomes_client_error() -> None:
    client = _client(
        lambda request: httpx.Response(
            401, json={"error": "SESSION_EXPIRED", "message": "Your session has expired. Please log in again."}
        )
    )

    with pytest.raises(APIClientError) as excinfo:
        client.request("GET", "/api/templates")

    assert excinfo.value.status_code == 401
    assert excinfo.value.error == "SESSION_EXPIRED"
    assert "expired" in excinfo.value.message


def test_transport_failures_become_client_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    with pytest.raises(APIClientError):
        _client(handler).request("GET", "/api/preferences")


def test_no_content_returns_none() -> None:
    assert _client(lambda request: httpx.Response(204)).request("DELETE", "/api/macros/m1") is None


def test_malformed_preferences_payload_raises() -> None:
    client = _client(lambda request: httpx.Response(200, json={"success": True}))

    with pytest.raises(APIClientError):
        client.fetch_preferences()
