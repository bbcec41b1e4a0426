'''Transcription macros and their categories.'''

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Response

from ...services.auth import AuthUser
from ...services.datastore import DataStore
from ...utils.logger import get_logger
from ..dependencies import get_current_user, get_datastore
from ..errors import ForbiddenError, NotFoundError, ValidationError, database_errors
from ..models import CategoryCreate, Macro, MacroCategory, MacroCreate, MacroUpdate, dump

logger = get_logger('airad.api.macros')

router = APIRouter(prefix='/api/macros', tags=['macros'])


def _owned_row(datastore: DataStore, table: str, row_id: str, user: AuthUser, *, label: str, action: str) -> Dict[str, Any]:
    with database_errors(f'Failed to load {label.lower()}'):
        row = datastore.select_one(table, {'id': row_id})
    if row is None:
        raise NotFoundError(f'{label} not found')
    if row.get('user_id') != user.id:
        raise ForbiddenError(f'You do not have permission to {action} this {label.lower()}')
    return row


@router.get('/categories')
def list_categories(
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    with database_errors('Failed to fetch categories'):
        rows = datastore.select('macro_categories', {'user_id': user.id}, order_by='created_at', descending=True)
    return {'success': True, 'data': [dump(MacroCategory.from_row(row)) for row in rows]}


@router.post('/categories', status_code=201)
def create_category(
    payload: CategoryCreate,
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    with database_errors('Failed to create category'):
        row = datastore.insert(
            'macro_categories',
            {'user_id': user.id, 'name': payload.name.strip(), 'parent_id': payload.parent_id or None},
        )
    return {
        'success': True,
        'message': 'Category created successfully',
        'data': dump(MacroCategory.from_row(row)),
    }


@router.delete('/categories/{category_id}', status_code=204)
def delete_category(
    category_id: str,
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Response:
    '''Delete a category; its macros and child categories are detached, not removed.'''

    _owned_row(datastore, 'macro_categories', category_id, user, label='Category', action='delete')
    with database_errors('Failed to delete category'):
        datastore.update('transcription_macros', {'category_id': category_id, 'user_id': user.id}, {'category_id': None})
        datastore.update('macro_categories', {'parent_id': category_id, 'user_id': user.id}, {'parent_id': None})
        datastore.delete('macro_categories', {'id': category_id, 'user_id': user.id})
    return Response(status_code=204)


@router.get('')
def list_macros(
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    with database_errors('Failed to fetch macros'):
        rows = datastore.select('transcription_macros', {'user_id': user.id}, order_by='created_at', descending=True)
    return {'success': True, 'data': [dump(Macro.from_row(row)) for row in rows]}


@router.post('', status_code=201)
def create_macro(
    payload: MacroCreate,
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    '''Create a macro; trigger names are stored trimmed and lower-cased.'''

    row = {
        'user_id': user.id,
        'name': payload.name.strip().lower(),
        'replacement_text': payload.replacement_text.strip(),
        'is_active': payload.is_active,
        'is_global': False,
        'is_smart': payload.is_smart_macro,
        'smart_context': payload.context_expansions,
        'category_id': payload.category_id or None,
    }
    with database_errors('Failed to create macro'):
        created = datastore.insert('transcription_macros', row)
    logger.info('Macro created.', extra={'context': {'macro_id': created['id']}})
    return {'success': True, 'message': 'Macro created successfully', 'data': dump(Macro.from_row(created))}


@router.put('/{macro_id}')
def update_macro(
    macro_id: str,
    payload: MacroUpdate,
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    fields = payload.model_fields_set
    if 'name' in fields:
        changes['name'] = payload.name.strip().lower()
    if 'replacement_text' in fields:
        changes['replacement_text'] = payload.replacement_text.strip()
    if 'is_active' in fields:
        changes['is_active'] = payload.is_active is True
    if 'is_smart_macro' in fields:
        changes['is_smart'] = payload.is_smart_macro is True
    if 'context_expansions' in fields:
        changes['smart_context'] = payload.context_expansions
    if 'category_id' in fields:
        changes['category_id'] = payload.category_id or None
    if not changes:
        raise ValidationError('No valid fields to update')

    _owned_row(datastore, 'transcription_macros', macro_id, user, label='Macro', action='update')
    with database_errors('Failed to update macro'):
        rows = datastore.update('transcription_macros', {'id': macro_id, 'user_id': user.id}, changes)
    if not rows:
        raise NotFoundError('Macro not found')
    return {'success': True, 'message': 'Macro updated successfully', 'data': dump(Macro.from_row(rows[0]))}


@router.delete('/{macro_id}', status_code=204)
def delete_macro(
    macro_id: str,
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Response:
    _owned_row(datastore, 'transcription_macros', macro_id, user, label='Macro', action='delete')
    with database_errors('Failed to delete macro'):
        datastore.delete('transcription_macros', {'id': macro_id, 'user_id': user.id})
    return Response(status_code=204)
