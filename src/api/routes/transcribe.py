'''Audio upload transcription.'''

from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...services.auth import AuthUser
from ...services.datastore import DataStore, DataStoreError
from ...services.llm import AIServiceError, OpenAIClient
from ...services.macros import expand_macros
from ...utils.config import get_settings
from ...utils.logger import get_logger
from ...utils.validators import unsupported_audio_message, validate_audio_size, validate_audio_type
from ..dependencies import get_current_user, get_datastore
from ..errors import (
    ConfigurationError,
    InternalServerError,
    InvalidRequestError,
    PayloadTooLargeError,
    ValidationError,
    database_errors,
)

logger = get_logger('airad.api.transcribe')

router = APIRouter(prefix='/api/transcribe', tags=['transcribe'])

TRUTHY = {'1', 'true', 'yes', 'on'}


def _apply_user_macros(datastore: DataStore, user: AuthUser, text: str) -> str:
    with database_errors('Failed to fetch macros'):
        macros = datastore.select('transcription_macros', {'user_id': user.id, 'is_active': True})
    return expand_macros(text, macros)


def _record_transcription(datastore: DataStore, user: AuthUser, duration: float) -> None:
    try:
        datastore.insert(
            'transcribe_sessions',
            {'user_id': user.id, 'status': 'completed', 'duration_seconds': duration},
        )
    except DataStoreError as exc:
        logger.warning('Failed to record transcription session.', extra={'context': {'error': str(exc)}})


@router.post('')
async def transcribe_audio(
    request: Request,
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    '''Transcribe the multipart ``audio`` field.

    Checks run in a fixed order: provider configuration, form parsing, file
    presence, size, then type. ``duration`` is the processing time in seconds.
    '''

    ai: OpenAIClient = request.app.state.ai_client
    if ai is None:
        raise ConfigurationError('AI transcription service is not configured. Please contact support.')

    content_type = request.headers.get('content-type', '')
    if not content_type.lower().startswith('multipart/form-data'):
        raise InvalidRequestError('Request must be multipart/form-data with an audio file.')
    try:
        form = await request.form()
    except StarletteHTTPException as exc:
        raise InvalidRequestError('Request must be multipart/form-data with an audio file.') from exc

    audio = form.get('audio')
    if not isinstance(audio, UploadFile):
        raise ValidationError(
            'No audio file provided. Please include an audio file in the "audio" field.',
            error='Missing File',
        )

    data = await audio.read()
    max_mb = get_settings().MAX_AUDIO_UPLOAD_MB
    ok, message = validate_audio_size(len(data), max_mb)
    if not ok:
        raise PayloadTooLargeError(message)
    if not validate_audio_type(audio.content_type, audio.filename):
        raise ValidationError(unsupported_audio_message(), error='Invalid File Type')

    started = time.perf_counter()
    try:
        result = await run_in_threadpool(
            ai.transcribe,
            data,
            filename=audio.filename or 'audio.webm',
            content_type=audio.content_type,
        )
    except AIServiceError as exc:
        raise InternalServerError('An error occurred while transcribing the audio. Please try again.') from exc
    duration = round(time.perf_counter() - started, 2)

    transcript = result['text']
    if str(form.get('applyMacros', '')).lower() in TRUTHY:
        transcript = await run_in_threadpool(_apply_user_macros, datastore, user, transcript)

    await run_in_threadpool(_record_transcription, datastore, user, duration)
    logger.info(
        'Transcription completed.',
        extra={'context': {'size_bytes': len(data), 'duration_seconds': duration}},
    )
    return {'success': True, 'transcript': transcript, 'duration': duration}
