"""HTTP client used by the session layer to talk to the backend API."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from src.session.csrf import CSRF_COOKIE, CSRF_HEADER, TokenStore, csrf_headers, requires_csrf_protection
from src.utils.logger import get_logger

LOGGER = get_logger("airad.client.api")


class APIClientError(RuntimeError):
    """Raised when a backend request fails or returns an error envelope."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, error: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error = error


class APIClient:
    """Thin JSON client sharing its cookie jar with the activity tracker."""

    REQUEST_TIMEOUT_SECONDS = 15.0

    def __init__(
        self,
        base_url: str,
        *,
        cookies: Optional[httpx.Cookies] = None,
        token_store: Optional[TokenStore] = None,
        transport: Optional[httpx.BaseTransport] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.cookies = cookies if cookies is not None else httpx.Cookies()
        self._token_store = token_store
        self._http_client = http_client or httpx.Client(
            base_url=base_url,
            timeout=self.REQUEST_TIMEOUT_SECONDS,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        # Share one jar so the session-timestamp cookie reaches the server.
        self._http_client.cookies = self.cookies.jar

    def request(self, method: str, path: str, *, json: Any = None) -> Any:
        headers: Dict[str, str] = {}
        if self._token_store is not None and requires_csrf_protection(method):
            headers.update(csrf_headers(self._token_store))
            # Double-submit: the server compares this cookie with the header.
            self.cookies.set(CSRF_COOKIE, headers[CSRF_HEADER])

        try:
            response = self._http_client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as exc:
            LOGGER.warning(
                "Backend request failed.",
                extra={"context": {"method": method, "path": path, "error": str(exc)}},
            )
            raise APIClientError(f"Request to {path} failed: {exc}") from exc

        if response.status_code == 204:
            return None

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            error = payload.get("error") if isinstance(payload, dict) else None
            message = payload.get("message") if isinstance(payload, dict) else None
            raise APIClientError(
                message or error or f"Request to {path} failed with status {response.status_code}.",
                status_code=response.status_code,
                error=error,
            )
        return payload

    def fetch_preferences(self) -> Dict[str, Any]:
        payload = self.request("GET", "/api/preferences")
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
            raise APIClientError("Malformed preferences response.")
        return payload["data"]

    def update_preferences(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        payload = self.request("PUT", "/api/preferences", json=changes)
        if not isinstance(payload, dict):
            raise APIClientError("Malformed preferences response.")
        return payload.get("data") or {}

    def close(self) -> None:
        self._http_client.close()

    def __enter__(self) -> "APIClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401 - context manager contract
        self.close()
