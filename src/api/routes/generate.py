'''Streamed radiology report generation.'''

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ...services.auth import AuthUser
from ...services.datastore import DataStore, DataStoreError
from ...services.llm import AIServiceError
from ...services.prompts import build_report_prompts
from ...utils.logger import get_logger
from ..dependencies import get_ai_client, get_current_user, get_datastore
from ..errors import InternalServerError
from ..models import GenerateRequest
from ..streaming import text_stream_response

logger = get_logger('airad.api.generate')

router = APIRouter(prefix='/api/generate', tags=['generate'])


def record_report_session(datastore: DataStore, user: AuthUser, payload: GenerateRequest) -> None:
    try:
        datastore.insert(
            'report_sessions',
            {
                'user_id': user.id,
                'template_id': payload.template_id,
                'modality': payload.modality,
                'body_part': payload.body_part,
                'status': 'completed',
            },
        )
    except DataStoreError as exc:
        logger.warning('Failed to record report session.', extra={'context': {'error': str(exc)}})


@router.post('')
def generate_report(
    payload: GenerateRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
):
    '''Stream a Markdown report built only from the dictated findings.'''

    ai = get_ai_client(request)
    system_prompt, prompt = build_report_prompts(
        findings=payload.findings,
        template_name=payload.template_name,
        modality=payload.modality,
        body_part=payload.body_part,
        template_content=payload.template_content,
    )
    try:
        chunks = ai.generate_stream(prompt, system_prompt=system_prompt, temperature=0.2, max_tokens=2000)
    except AIServiceError as exc:
        raise InternalServerError('An error occurred while generating the report. Please try again.') from exc

    record_report_session(datastore, user, payload)
    logger.info(
        'Report generation started.',
        extra={'context': {'template_id': payload.template_id, 'modality': payload.modality}},
    )
    return text_stream_response(chunks, operation='generate_report')
