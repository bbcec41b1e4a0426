'''Admin dashboard aggregates.'''

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from ...services.datastore import DataStore
from ..dependencies import get_datastore, require_admin
from ..errors import database_errors

router = APIRouter(prefix='/api/admin', tags=['admin'])


def start_of_month(now: Optional[datetime] = None) -> str:
    '''First instant of the current UTC month, ISO formatted.'''

    now = now or datetime.now(timezone.utc)
    return datetime(now.year, now.month, 1, tzinfo=timezone.utc).isoformat()


@router.get('/stats')
def admin_stats(
    profile: Dict[str, Any] = Depends(require_admin),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    since = {'created_at': start_of_month()}
    completed = {'status': 'completed'}
    with database_errors('Failed to load admin statistics'):
        profiles = datastore.select('profiles')
        new_profiles = datastore.count('profiles', gte=since)
        subscriptions = datastore.select('subscriptions')
        stats = {
            'users': {
                'total': len(profiles),
                'admins': sum(1 for row in profiles if row.get('role') == 'admin'),
                'radiologists': sum(1 for row in profiles if row.get('role') == 'radiologist'),
                'newThisMonth': new_profiles,
            },
            'usage': {
                'totalReports': datastore.count('report_sessions'),
                'reportsThisMonth': datastore.count('report_sessions', gte=since),
                'totalTranscriptions': datastore.count('transcribe_sessions', completed),
                'transcriptionsThisMonth': datastore.count('transcribe_sessions', completed, gte=since),
            },
            'subscriptions': {
                'free': sum(1 for row in subscriptions if row.get('plan') == 'free'),
                'plus': sum(1 for row in subscriptions if row.get('plan') == 'plus'),
                'pro': sum(1 for row in subscriptions if row.get('plan') == 'pro'),
                'activeCount': datastore.count('subscriptions', {'status': 'active'}),
            },
            'templates': {
                'globalPublished': datastore.count('templates_global', {'is_published': True}),
                'globalDraft': datastore.count('templates_global', {'is_published': False}),
                'personalTotal': datastore.count('templates_personal'),
            },
        }
    return {'success': True, 'data': stats}


@router.get('/users')
def admin_users(
    profile: Dict[str, Any] = Depends(require_admin),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    with database_errors('Failed to load users'):
        rows = datastore.select('profiles', order_by='created_at', descending=True)
    users = [
        {
            'id': row['user_id'],
            'email': row.get('email'),
            'name': row.get('name'),
            'role': row.get('role', 'radiologist'),
            'createdAt': row.get('created_at'),
        }
        for row in rows
    ]
    return {'success': True, 'data': users, 'totalUsers': len(users)}
