'''Server-side user preferences.'''

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic.alias_generators import to_camel

from ...services.auth import AuthUser
from ...services.datastore import DataStore
from ..dependencies import get_current_user, get_datastore
from ..errors import ValidationError, database_errors
from ..models import Preferences, PreferencesUpdate, dump

router = APIRouter(prefix='/api/preferences', tags=['preferences'])

_COLUMNS = {
    'theme': 'theme',
    'default_template': 'default_template_id',
    'auto_save': 'keyboard_shortcuts_enabled',
    'yolo_mode': 'yolo_mode_enabled',
    'onboarding_completed': 'onboarding_completed',
}
_NOT_NULLABLE = {
    'theme': 'Invalid theme value. Must be light, dark, or system.',
    'auto_save': 'autoSave must be a boolean.',
    'yolo_mode': 'yoloMode must be a boolean.',
    'onboarding_completed': 'onboardingCompleted must be a boolean.',
}


@router.get('')
def get_preferences(
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    '''Return stored preferences, or the server defaults when no row exists.'''

    with database_errors('Failed to fetch preferences'):
        row = datastore.select_one('user_preferences', {'user_id': user.id})
    preferences = Preferences.from_row(row) if row else Preferences()
    return {'success': True, 'data': dump(preferences)}


@router.put('')
def update_preferences(
    payload: PreferencesUpdate,
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    '''Upsert only the fields present in the body.'''

    row: Dict[str, Any] = {'user_id': user.id}
    for field in payload.model_fields_set:
        value = getattr(payload, field)
        if value is None and field in _NOT_NULLABLE:
            raise ValidationError.for_field(to_camel(field), _NOT_NULLABLE[field])
        row[_COLUMNS[field]] = value

    with database_errors('Failed to update preferences'):
        saved = datastore.upsert('user_preferences', row, on_conflict='user_id')
    return {'success': True, 'data': dump(Preferences.from_row(saved))}
