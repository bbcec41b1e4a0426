'''Helpers for streaming model output to the client as plain text.'''

from __future__ import annotations

from typing import Iterator

from fastapi.responses import StreamingResponse

from ..services.llm import AIServiceError
from ..utils.logger import get_logger

logger = get_logger('airad.api.streaming')

TEXT_STREAM_MEDIA_TYPE = 'text/plain; charset=utf-8'


def _guarded(chunks: Iterator[str], operation: str) -> Iterator[str]:
    # Headers are already sent once the first chunk goes out, so a provider
    # failure can only end the stream early.
    try:
        yield from chunks
    except AIServiceError as exc:
        logger.error(
            'Stream ended early.',
            extra={'context': {'operation': operation, 'error': str(exc)}},
        )


def text_stream_response(chunks: Iterator[str], *, operation: str) -> StreamingResponse:
    return StreamingResponse(_guarded(chunks, operation), media_type=TEXT_STREAM_MEDIA_TYPE)
