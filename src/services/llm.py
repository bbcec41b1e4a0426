from __future__ import annotations

"""OpenAI access for report streaming, template JSON and dictation transcripts."""

import json
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from jsonschema import ValidationError as SchemaValidationError, validate
from openai import APIConnectionError, APITimeoutError, OpenAI, OpenAIError, RateLimitError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.utils.config import get_settings
from src.utils.logger import get_logger, log_ai_call, log_error

LOGGER = get_logger("airad.services.llm")

TRANSIENT_ERRORS = (RateLimitError, APITimeoutError, APIConnectionError)


class AIServiceError(RuntimeError):
    """Raised when calls to the AI provider fail."""


class _UnusableOutput(ValueError):
    """Model output that is not JSON or does not match the requested schema."""


@dataclass
class _CallStats:
    calls: int = 0
    errors: int = 0
    tokens: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def success(self, tokens: int) -> None:
        with self.lock:
            self.calls += 1
            self.tokens += tokens

    def failure(self) -> None:
        with self.lock:
            self.calls += 1
            self.errors += 1


def _usage_of(source: Any) -> tuple[int, int]:
    usage = getattr(source, "usage", None)
    if not usage:
        return 0, 0
    return (getattr(usage, "prompt_tokens", 0) or 0, getattr(usage, "completion_tokens", 0) or 0)


def _message_text(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    message = getattr(choices[0], "message", None) if choices else None
    return (getattr(message, "content", None) or "") if message else ""


def _structured(raw: str, schema: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise _UnusableOutput(f"not JSON: {exc}") from exc
    if schema is not None:
        try:
            validate(instance=payload, schema=schema)
        except SchemaValidationError as exc:
            raise _UnusableOutput(f"schema mismatch: {exc.message}") from exc
    return payload


class OpenAIClient:
    """The three AI operations the API needs, with retries and usage logging.

    Transient provider failures (rate limits, timeouts, dropped connections)
    are retried with exponential backoff. Every other provider error surfaces
    as :class:`AIServiceError`.
    """

    REQUEST_TIMEOUT_SECONDS = 60.0

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        transcription_model: Optional[str] = None,
        client: Optional[Any] = None,
        max_attempts: int = 5,
    ) -> None:
        settings = get_settings()
        self.model = model or settings.OPENAI_MODEL
        self.transcription_model = transcription_model or settings.OPENAI_TRANSCRIPTION_MODEL

        if client is None:
            if api_key is None and settings.OPENAI_API_KEY is not None:
                api_key = settings.OPENAI_API_KEY.get_secret_value()
            if not api_key:
                raise AIServiceError("OpenAI API key is not configured.")
            client = OpenAI(api_key=api_key, timeout=self.REQUEST_TIMEOUT_SECONDS)
        self._client = client
        self._stats = _CallStats()
        self._retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=16),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        )

    @property
    def total_tokens(self) -> int:
        return self._stats.tokens

    @property
    def error_rate(self) -> float:
        stats = self._stats
        return stats.errors / stats.calls if stats.calls else 0.0

    def generate_json(
        self,
        prompt: str,
        *,
        schema: Optional[Dict[str, Any]] = None,
        system_prompt: Optional[str] = None,
        temperature: float = 0.3,
        max_retries: int = 3,
    ) -> Dict[str, Any]:
        """Ask for a JSON object; unusable output is re-requested up to ``max_retries`` times."""

        messages = self._messages(prompt, system_prompt)
        rejection: Optional[_UnusableOutput] = None
        for attempt in range(1, max_retries + 1):
            started = time.perf_counter()
            response = self._send(
                "generate_json",
                lambda: self._client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=temperature,
                    response_format={"type": "json_object"},
                ),
                attempt=attempt,
            )
            self._succeeded("generate_json", started, *_usage_of(response))
            try:
                return _structured(_message_text(response), schema)
            except _UnusableOutput as exc:
                rejection = exc
                LOGGER.debug(
                    "Discarding unusable JSON output.",
                    extra={"context": {"attempt": attempt, "reason": str(exc)}},
                )

        self._failed("generate_json", rejection or _UnusableOutput("no output"), attempts=max_retries)
        raise AIServiceError("Structured generation failed.") from rejection

    def generate_stream(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 2000,
    ) -> Iterator[str]:
        """Return an iterator over text deltas.

        The request is sent eagerly so configuration and connection failures
        raise here rather than after the response has started.
        """

        messages = self._messages(prompt, system_prompt)
        started = time.perf_counter()
        stream = self._send(
            "generate_stream",
            lambda: self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            ),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return self._deltas(stream, started)

    def transcribe(self, audio: bytes, *, filename: str, content_type: Optional[str] = None) -> Dict[str, Any]:
        """Transcribe one recording; returns ``{"text", "duration"}`` in seconds."""

        upload = (filename, audio, content_type) if content_type else (filename, audio)
        started = time.perf_counter()
        response = self._send(
            "transcribe",
            lambda: self._client.audio.transcriptions.create(
                model=self.transcription_model,
                file=upload,
                response_format="verbose_json",
            ),
            filename=filename,
            size_bytes=len(audio),
        )
        self._succeeded("transcribe", started, 0, 0)

        if isinstance(response, dict):
            text, duration = response.get("text"), response.get("duration")
        else:
            text, duration = getattr(response, "text", None), getattr(response, "duration", None)
        return {"text": text or "", "duration": float(duration) if duration is not None else None}

    def _deltas(self, stream: Any, started: float) -> Iterator[str]:
        prompt_tokens = completion_tokens = 0
        try:
            for chunk in stream:
                delta = chunk.choices[0].delta if chunk.choices else None
                text = getattr(delta, "content", None)
                if text:
                    yield text
                if getattr(chunk, "usage", None):
                    prompt_tokens, completion_tokens = _usage_of(chunk)
        except OpenAIError as exc:
            self._failed("generate_stream", exc)
            raise AIServiceError("Streaming request failed.") from exc
        self._succeeded("generate_stream", started, prompt_tokens, completion_tokens)

    def _send(self, operation: str, request: Callable[[], Any], **context: Any) -> Any:
        LOGGER.debug("Sending AI request.", extra={"context": {"operation": operation, **context}})
        try:
            return self._retrying(request)
        except OpenAIError as exc:
            self._failed(operation, exc, **context)
            raise AIServiceError(f"AI provider {operation} failed.") from exc

    def _succeeded(self, operation: str, started: float, prompt_tokens: int, completion_tokens: int) -> None:
        self._stats.success(prompt_tokens + completion_tokens)
        log_ai_call(
            service="openai",
            operation=operation,
            latency_ms=(time.perf_counter() - started) * 1000.0,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )

    def _failed(self, operation: str, error: Exception, **context: Any) -> None:
        self._stats.failure()
        log_error(error, context={"operation": operation, "model": self.model, **context})

    @staticmethod
    def _messages(prompt: str, system_prompt: Optional[str]) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
        messages.append({"role": "user", "content": prompt})
        return messages
