from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Dict, Iterator, List, Optional

import pytest
from fastapi.testclient import TestClient

from src.services.auth import MOCK_AUTH_COOKIE, AuthClient
from src.services.billing import BillingError
from src.services.datastore import DataStore
from src.services.llm import AIServiceError
from src.session.activity import SESSION_TIMESTAMP_COOKIE
from src.session.scheduler import system_clock
from src.utils.config import get_settings

_ENV_OVERRIDES = {
    "ENVIRONMENT": "dev",
    "USE_MOCK_BACKEND": "true",
    "CSRF_ENFORCE": "false",
    "APP_URL": "http://testserver",
}
_ENV_CLEARED = (
    "OPENAI_API_KEY",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "STRIPE_PRICE_ID_PLUS",
    "STRIPE_PRICE_ID_PRO",
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "SUPABASE_SERVICE_ROLE_KEY",
)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for key, value in _ENV_OVERRIDES.items():
        monkeypatch.setenv(key, value)
    for key in _ENV_CLEARED:
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# --------------------------------------------------------------------------- #
# Time
# --------------------------------------------------------------------------- #


class FakeClock:
    """Epoch-millisecond clock advanced by hand."""

    def __init__(self, start: int = 1_760_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now


class _ManualHandle:
    def __init__(self, due: int, callback: Callable[[], Any]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose timers fire only when :meth:`advance` passes them."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self._timers: List[_ManualHandle] = []

    def call_later(self, delay_seconds: float, callback: Callable[[], Any]) -> _ManualHandle:
        handle = _ManualHandle(self.clock.now + int(round(delay_seconds * 1000)), callback)
        self._timers.append(handle)
        return handle

    @property
    def pending(self) -> List[_ManualHandle]:
        return [timer for timer in self._timers if not timer.cancelled]

    def advance(self, ms: int) -> None:
        target = self.clock.now + ms
        while True:
            due = [timer for timer in self.pending if timer.due <= target]
            if not due:
                break
            timer = min(due, key=lambda item: item.due)
            self._timers.remove(timer)
            self.clock.now = max(self.clock.now, timer.due)
            timer.callback()
        self.clock.now = target


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> ManualScheduler:
    return ManualScheduler(clock)


# --------------------------------------------------------------------------- #
# Collaborators
# --------------------------------------------------------------------------- #


class FakeAIClient:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.stream_chunks = ["## Findings\n", "Normal study."]
        self.json_output: Dict[str, Any] = {}
        self.transcript = "normal chest"
        self.fail = False

    def generate_stream(self, prompt: str, **kwargs: Any) -> Iterator[str]:
        self.calls.append({"operation": "generate_stream", "prompt": prompt, **kwargs})
        if self.fail:
            raise AIServiceError("provider down")
        return iter(list(self.stream_chunks))

    def generate_json(self, prompt: str, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append({"operation": "generate_json", "prompt": prompt, **kwargs})
        if self.fail:
            raise AIServiceError("provider down")
        return self.json_output

    def transcribe(self, audio: bytes, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append({"operation": "transcribe", "size": len(audio), **kwargs})
        if self.fail:
            raise AIServiceError("provider down")
        return {"text": self.transcript, "duration": 1.5}


class FakeBilling:
    configured = True
    webhook_configured = True

    def __init__(self) -> None:
        self.customers: List[Dict[str, str]] = []
        self.checkouts: List[Dict[str, Any]] = []
        self.price_plans = {"price_plus": "plus", "price_pro": "pro"}

    def plan_for_price(self, price_id: Optional[str]) -> str:
        return self.price_plans.get(price_id or "", "free")

    def create_customer(self, *, email: str, user_id: str) -> str:
        self.customers.append({"email": email, "user_id": user_id})
        return f"cus_{len(self.customers)}"

    def create_checkout_session(self, **kwargs: Any) -> str:
        self.checkouts.append(kwargs)
        return "https://checkout.test/session"

    def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        return f"https://portal.test/{customer_id}"

    def list_invoices(self, customer_id: str) -> List[Dict[str, Any]]:
        return [{"id": "in_1", "amount": "$10.00", "status": "paid"}]

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        if signature != "valid":
            raise BillingError("Webhook signature verification failed: bad signature")
        return json.loads(payload)



@pytest.fixture
def loop_usage(monkeypatch: pytest.MonkeyPatch, datastore: DataStore) -> Callable[..., List[bool]]:
    """Wrap datastore methods to record whether each call ran on an event-loop thread."""

    calls: List[bool] = []

    def wrap(original: Callable[..., Any]) -> Callable[..., Any]:
        def recorded(*args: Any, **kwargs: Any) -> Any:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                calls.append(False)
            else:
                calls.append(True)
            return original(*args, **kwargs)

        return recorded

    def install(*methods: str) -> List[bool]:
        for name in methods:
            monkeypatch.setattr(datastore, name, wrap(getattr(datastore, name)))
        return calls

    return install


@pytest.fixture
def ai_client() -> FakeAIClient:
    return FakeAIClient()


@pytest.fixture
def billing() -> FakeBilling:
    return FakeBilling()


@pytest.fixture
def datastore() -> DataStore:
    return DataStore(use_mock=True)


@pytest.fixture
def app(datastore: DataStore, ai_client: FakeAIClient, billing: FakeBilling):
    from src.api.app import create_app

    return create_app(
        datastore=datastore,
        auth=AuthClient(use_mock=True),
        ai_client=ai_client,
        billing=billing,
    )


@pytest.fixture
def client(app) -> Iterator[TestClient]:
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client


def sign_in(client: TestClient, user: str = "radiologist", *, fresh_session: bool = True) -> TestClient:
    client.cookies.set(MOCK_AUTH_COOKIE, user)
    if fresh_session:
        client.cookies.set(SESSION_TIMESTAMP_COOKIE, str(system_clock()))
    return client


@pytest.fixture
def radiologist(client: TestClient) -> TestClient:
    return sign_in(client, "radiologist")


@pytest.fixture
def admin(client: TestClient) -> TestClient:
    return sign_in(client, "admin")
