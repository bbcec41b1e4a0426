"""Client for the managed authentication provider.

In mock mode users are resolved from the ``mock-auth-user`` cookie value:
``radiologist`` and ``admin`` map to fixed users and ``custom_<email>``
yields an ad-hoc radiologist.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

import httpx

from src.utils.config import get_settings
from src.utils.logger import get_logger

LOGGER = get_logger("airad.services.auth")

MOCK_AUTH_COOKIE = "mock-auth-user"
ACCESS_TOKEN_COOKIE = "sb-access-token"


class AuthError(RuntimeError):
    """Raised when the auth provider cannot be reached or rejects a request."""


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str
    role: Literal["radiologist", "admin"] = "radiologist"
    name: Optional[str] = None


MOCK_USERS: Dict[str, AuthUser] = {
    "radiologist": AuthUser(
        id="mock-user-radiologist-123",
        email="radiologist@test.com",
        role="radiologist",
        name="Dr. Test Radiologist",
    ),
    "admin": AuthUser(
        id="mock-user-admin-456",
        email="admin@test.com",
        role="admin",
        name="Admin User",
    ),
}


def get_mock_user(value: Optional[str]) -> Optional[AuthUser]:
    if not value:
        return None
    if value in MOCK_USERS:
        return MOCK_USERS[value]
    if value.startswith("custom_"):
        email = value[len("custom_"):]
        if not email:
            return None
        return AuthUser(
            id=f"custom-user-{re.sub(r'[^a-z0-9]', '-', email, flags=re.IGNORECASE)}",
            email=email,
            role="radiologist",
            name=email.split("@")[0],
        )
    return None


class AuthClient:
    REQUEST_TIMEOUT_SECONDS = 10.0

    def __init__(
        self,
        *,
        use_mock: Optional[bool] = None,
        base_url: Optional[str] = None,
        anon_key: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        settings = get_settings()
        self.use_mock = settings.USE_MOCK_BACKEND if use_mock is None else use_mock
        self._http_client: Optional[httpx.Client] = None
        if self.use_mock:
            return

        if http_client is not None:
            self._http_client = http_client
            return

        url = base_url or settings.SUPABASE_URL
        key = anon_key
        if key is None and settings.SUPABASE_ANON_KEY is not None:
            key = settings.SUPABASE_ANON_KEY.get_secret_value()
        if not url or not key:
            raise AuthError("Auth provider URL and anon key must be configured.")
        self._http_client = httpx.Client(
            base_url=f"{url.rstrip('/')}/auth/v1",
            timeout=self.REQUEST_TIMEOUT_SECONDS,
            headers={"apikey": key},
        )

    def get_user(self, access_token: Optional[str]) -> Optional[AuthUser]:
        """Resolve the user behind ``access_token``; ``None`` when it is invalid."""

        if not access_token:
            return None
        if self.use_mock:
            return get_mock_user(access_token)

        assert self._http_client is not None  # pragma: no cover - defensive
        try:
            response = self._http_client.get(
                "/user", headers={"Authorization": f"Bearer {access_token}"}
            )
        except httpx.HTTPError as exc:
            LOGGER.error("Auth provider unreachable.", extra={"context": {"error": str(exc)}})
            raise AuthError("Auth provider unreachable.") from exc

        if response.status_code in (401, 403):
            return None
        if response.is_error:
            raise AuthError(f"Auth provider returned status {response.status_code}.")
        return self._user_from_payload(response.json())

    def exchange_code_for_session(self, code: str, code_verifier: Optional[str] = None) -> Dict[str, Any]:
        """Trade an OAuth/PKCE authorization code for a session."""

        if self.use_mock:
            user = get_mock_user(code)
            if user is None:
                raise AuthError("Invalid authorization code.")
            return {"access_token": code, "refresh_token": None, "user": user}

        assert self._http_client is not None  # pragma: no cover - defensive
        try:
            response = self._http_client.post(
                "/token",
                params={"grant_type": "pkce"},
                json={"auth_code": code, "code_verifier": code_verifier},
            )
        except httpx.HTTPError as exc:
            raise AuthError("Auth provider unreachable.") from exc
        if response.is_error:
            LOGGER.warning(
                "Authorization code exchange rejected.",
                extra={"context": {"status_code": response.status_code}},
            )
            raise AuthError("Invalid authorization code.")
        payload = response.json()
        return {
            "access_token": payload.get("access_token"),
            "refresh_token": payload.get("refresh_token"),
            "user": self._user_from_payload(payload.get("user") or {}),
        }

    def close(self) -> None:
        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    @staticmethod
    def _user_from_payload(payload: Dict[str, Any]) -> Optional[AuthUser]:
        user_id = payload.get("id")
        if not user_id:
            return None
        metadata = payload.get("user_metadata") or {}
        role = "admin" if (payload.get("app_metadata") or {}).get("role") == "admin" else "radiologist"
        return AuthUser(
            id=user_id,
            email=payload.get("email") or "",
            role=role,
            name=metadata.get("full_name") or metadata.get("name"),
        )
