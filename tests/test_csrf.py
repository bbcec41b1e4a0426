from __future__ import annotations

import logging
import re
import uuid

import pytest

from src.session import csrf as csrf_module
from src.session.csrf import (
    CSRF_FIELD,
    CSRF_HEADER,
    CSRF_TOKEN_KEY,
    CsrfError,
    CsrfGuard,
    TokenStore,
    csrf_headers,
    requires_csrf_protection,
)
from src.storage.kv import MemoryStorage


def test_separate_sessions_get_distinct_tokens() -> None:
    first = TokenStore(MemoryStorage()).get_or_create_token()
    second = TokenStore(MemoryStorage()).get_or_create_token()

    assert first and second
    assert first != second
    uuid.UUID(first)


def test_token_is_stable_within_a_session() -> None:
    storage = MemoryStorage()
    store = TokenStore(storage)

    token = store.get_or_create_token()

    assert store.get_or_create_token() == token
    assert storage.get(CSRF_TOKEN_KEY) == token


def test_validate_accepts_only_the_exact_stored_token() -> None:
    store = TokenStore(MemoryStorage(), token_factory=lambda: "abcdef")
    store.get_or_create_token()

    assert store.validate("abcdef") is True
    assert store.validate("abcdeg") is False
    assert store.validate("abcde") is False
    assert store.validate("") is False
    assert store.validate(None) is False


def test_validate_without_stored_token_fails_and_does_not_create_one() -> None:
    storage = MemoryStorage()
    store = TokenStore(storage)

    assert store.validate("anything") is False
    assert CSRF_TOKEN_KEY not in storage


def test_validate_logs_the_failure_reason(caplog: pytest.LogCaptureFixture) -> None:
    store = TokenStore(MemoryStorage(), token_factory=lambda: "token-1")
    store.get_or_create_token()

    with caplog.at_level(logging.WARNING, logger="airad.session.csrf"):
        store.validate("token-2")
        store.validate("short")

    reasons = [record.context["reason"] for record in caplog.records]
    assert reasons == ["token_mismatch", "length_mismatch"]


def test_regenerate_invalidates_previous_token() -> None:
    store = TokenStore(MemoryStorage())
    old = store.get_or_create_token()

    new = store.regenerate()

    assert new != old
    assert store.validate(old) is False
    assert store.validate(new) is True


def test_clear_removes_token() -> None:
    storage = MemoryStorage()
    store = TokenStore(storage)
    store.get_or_create_token()

    store.clear()

    assert CSRF_TOKEN_KEY not in storage


def test_fallback_generator_used_without_os_randomness(monkeypatch: pytest.MonkeyPatch) -> None:
    def _no_randomness() -> uuid.UUID:
        raise NotImplementedError

    monkeypatch.setattr(csrf_module.uuid, "uuid4", _no_randomness)

    token = csrf_module.generate_token()

    assert re.fullmatch(r"csrf-[0-9a-z]+", token)


def test_requires_csrf_protection_by_method() -> None:
    assert requires_csrf_protection("GET") is False
    assert requires_csrf_protection("head") is False
    assert requires_csrf_protection("OPTIONS") is False
    assert requires_csrf_protection("POST") is True
    assert requires_csrf_protection("delete") is True


def test_csrf_headers_carry_current_token() -> None:
    store = TokenStore(MemoryStorage(), token_factory=lambda: "tok")

    assert csrf_headers(store) == {CSRF_HEADER: "tok"}


def test_guard_renders_hidden_field_bound_to_token() -> None:
    guard = CsrfGuard(TokenStore(MemoryStorage(), token_factory=lambda: 'a"b'))

    token = guard.mount()

    assert token == 'a"b'
    assert guard.field_name == CSRF_FIELD
    assert guard.hidden_field() == '<input type="hidden" name="_csrf" value="a&quot;b">'


def test_guard_protect_runs_action_only_with_valid_token() -> None:
    guard = CsrfGuard(TokenStore(MemoryStorage()))
    token = guard.mount()
    calls = []

    result = guard.protect({CSRF_FIELD: token}, lambda: calls.append("saved") or "ok")

    assert result == "ok"
    assert calls == ["saved"]

    with pytest.raises(CsrfError) as excinfo:
        guard.protect({CSRF_FIELD: "forged"}, lambda: calls.append("forged"))
    assert "refresh the page" in str(excinfo.value)

    with pytest.raises(CsrfError):
        guard.protect({}, lambda: calls.append("missing"))
    assert calls == ["saved"]


def test_guard_regenerate_updates_bound_field() -> None:
    guard = CsrfGuard(TokenStore(MemoryStorage()))
    old = guard.mount()

    new = guard.regenerate_token()

    assert guard.token == new != old
    assert guard.validate_token(old) is False
