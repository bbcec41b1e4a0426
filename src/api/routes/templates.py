'''Personal and global report templates.'''

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request, Response
from pydantic import ValidationError as PydanticValidationError

from ...services.auth import AuthUser
from ...services.datastore import DataStore
from ...services.llm import AIServiceError
from ...services.prompts import GENERATED_TEMPLATE_SCHEMA, build_suggest_prompts, build_template_prompts
from ...utils.logger import get_logger
from ..dependencies import get_ai_client, get_current_user, get_datastore, require_active_session
from ..errors import ForbiddenError, InternalServerError, NotFoundError, database_errors, validation_error_from
from ..models import CloneRequest, SuggestRequest, Template, TemplateForm, TemplateGenerateRequest, dump
from ..streaming import text_stream_response

logger = get_logger('airad.api.templates')

router = APIRouter(prefix='/api/templates', tags=['templates'])

FAILED_VALIDATION_MESSAGE = 'Template data failed validation'


def _parse_form(body: Dict[str, Any]) -> TemplateForm:
    try:
        return TemplateForm.model_validate(body)
    except PydanticValidationError as exc:
        raise validation_error_from(exc, FAILED_VALIDATION_MESSAGE) from exc


def _form_row(form: TemplateForm) -> Dict[str, Any]:
    return {
        'name': form.name,
        'modality': form.modality,
        'body_part': form.body_part,
        'description': form.description,
        'content': form.to_content(),
    }


def _raise_missing_or_forbidden(datastore: DataStore, template_id: str, action: str) -> None:
    with database_errors('Failed to load template'):
        exists = datastore.select_one('templates_personal', {'id': template_id})
    if exists is not None:
        raise ForbiddenError(f'You do not have permission to {action} this template')
    raise NotFoundError('Template not found')


@router.get('')
def list_templates(
    user: AuthUser = Depends(require_active_session),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    '''Personal templates first, then every published global template.'''

    with database_errors('Failed to fetch templates'):
        personal = datastore.select('templates_personal', {'user_id': user.id}, order_by='updated_at', descending=True)
        published = datastore.select('templates_global', {'is_published': True}, order_by='name')
    data = [dump(Template.from_row(row, is_global=False)) for row in personal]
    data.extend(dump(Template.from_row(row, is_global=True)) for row in published)
    return {'success': True, 'data': data, 'user': {'id': user.id, 'role': user.role}}


@router.post('', status_code=201)
def create_template(
    body: Dict[str, Any] = Body(...),
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    form = _parse_form(body)
    with database_errors('Failed to create template'):
        row = datastore.insert('templates_personal', {'user_id': user.id, **_form_row(form)})
    logger.info('Template created.', extra={'context': {'template_id': row['id']}})
    return {
        'success': True,
        'message': 'Template created successfully',
        'data': dump(Template.from_row(row, is_global=False)),
    }


@router.post('/validate')
def validate_template(
    body: Dict[str, Any] = Body(...),
    user: AuthUser = Depends(require_active_session),
) -> Dict[str, Any]:
    form = _parse_form(body)
    return {'success': True, 'message': 'Template data is valid', 'data': dump(form)}


@router.post('/clone', status_code=201)
def clone_template(
    body: Dict[str, Any] = Body(...),
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    '''Copy a published global template into the caller's personal space.'''

    try:
        request = CloneRequest.model_validate(body)
    except PydanticValidationError as exc:
        raise validation_error_from(exc, 'Invalid clone request') from exc

    with database_errors('Failed to load template'):
        source = datastore.select_one(
            'templates_global', {'id': request.global_template_id, 'is_published': True}
        )
    if source is None:
        raise NotFoundError('Global template not found or not published')

    clone = {
        'user_id': user.id,
        'name': request.name or f"{source['name']} (Copy)",
        'modality': source['modality'],
        'body_part': source['body_part'],
        'description': source.get('description'),
        'content': source.get('content') or {},
        'tags': source.get('tags') or [],
        'origin_global_id': source['id'],
    }
    with database_errors('Failed to clone template'):
        row = datastore.insert('templates_personal', clone)
    return {
        'success': True,
        'message': 'Template cloned successfully',
        'data': dump(Template.from_row(row, is_global=False)),
    }


@router.post('/generate')
def generate_template(
    payload: TemplateGenerateRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
) -> Dict[str, Any]:
    ai = get_ai_client(request)
    system_prompt, prompt = build_template_prompts(
        description=payload.description.strip(),
        modality=payload.modality,
        body_part=payload.body_part,
    )
    try:
        output = ai.generate_json(
            prompt,
            schema=GENERATED_TEMPLATE_SCHEMA,
            system_prompt=system_prompt,
            temperature=0.3,
        )
    except AIServiceError as exc:
        raise InternalServerError('An error occurred while generating the template. Please try again.') from exc
    return {'success': True, 'data': output}


@router.post('/suggest')
def suggest_template_content(
    payload: SuggestRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
):
    '''Stream section, improvement, or normal-findings suggestions.'''

    ai = get_ai_client(request)
    sections = [section.model_dump() for section in payload.existing_sections or []]
    system_prompt, prompt = build_suggest_prompts(
        payload.request_type,
        modality=payload.modality,
        body_part=payload.body_part,
        description=payload.description,
        existing_sections=sections,
    )
    try:
        chunks = ai.generate_stream(prompt, system_prompt=system_prompt, temperature=0.3, max_tokens=2000)
    except AIServiceError as exc:
        raise InternalServerError('An error occurred while generating suggestions. Please try again.') from exc
    return text_stream_response(chunks, operation='suggest')


@router.get('/{template_id}')
def get_template(
    template_id: str,
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    with database_errors('Failed to fetch template'):
        personal: Optional[Dict[str, Any]] = datastore.select_one(
            'templates_personal', {'id': template_id, 'user_id': user.id}
        )
        if personal is not None:
            return {'success': True, 'data': dump(Template.from_row(personal, is_global=False))}
        shared = datastore.select_one('templates_global', {'id': template_id, 'is_published': True})
    if shared is None:
        raise NotFoundError('Template not found')
    return {'success': True, 'data': dump(Template.from_row(shared, is_global=True))}


@router.put('/{template_id}')
def update_template(
    template_id: str,
    body: Dict[str, Any] = Body(...),
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    form = _parse_form(body)
    with database_errors('Failed to update template'):
        rows = datastore.update(
            'templates_personal', {'id': template_id, 'user_id': user.id}, _form_row(form)
        )
    if not rows:
        _raise_missing_or_forbidden(datastore, template_id, 'update')
    return {
        'success': True,
        'message': 'Template updated successfully',
        'data': dump(Template.from_row(rows[0], is_global=False)),
    }


@router.delete('/{template_id}', status_code=204)
def delete_template(
    template_id: str,
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Response:
    with database_errors('Failed to delete template'):
        removed = datastore.delete('templates_personal', {'id': template_id, 'user_id': user.id})
    if removed == 0:
        _raise_missing_or_forbidden(datastore, template_id, 'delete')
    return Response(status_code=204)
