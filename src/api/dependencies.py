'''FastAPI dependencies resolving collaborators and the calling user.'''

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Depends, Request

from ..services.auth import ACCESS_TOKEN_COOKIE, MOCK_AUTH_COOKIE, AuthClient, AuthError, AuthUser
from ..services.billing import BillingService
from ..services.datastore import DataStore
from ..services.llm import OpenAIClient
from ..session.activity import SESSION_TIMESTAMP_COOKIE, is_session_expired, parse_session_timestamp
from ..utils.config import get_settings
from ..utils.logger import get_logger
from .errors import (
    ConfigurationError,
    ForbiddenError,
    NotFoundError,
    SessionExpiredError,
    UnauthorizedError,
    database_errors,
)

logger = get_logger('airad.api.auth')


def get_datastore(request: Request) -> DataStore:
    return request.app.state.datastore


def get_auth_client(request: Request) -> AuthClient:
    return request.app.state.auth


def get_access_token(request: Request) -> Optional[str]:
    '''Bearer header first, then the session cookie, then the dev mock cookie.'''

    header = request.headers.get('authorization', '')
    if header.lower().startswith('bearer '):
        token = header[7:].strip()
        if token:
            return token
    token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if token:
        return token
    if request.app.state.auth.use_mock:
        return request.cookies.get(MOCK_AUTH_COOKIE)
    return None


def resolve_user(request: Request) -> Optional[AuthUser]:
    '''Return the signed-in user, or ``None`` if the request is anonymous.'''

    auth: AuthClient = request.app.state.auth
    try:
        return auth.get_user(get_access_token(request))
    except AuthError as exc:
        logger.warning('Failed to resolve user.', extra={'context': {'error': str(exc)}})
        return None


def get_current_user(request: Request) -> AuthUser:
    user = resolve_user(request)
    if user is None:
        raise UnauthorizedError()
    request.state.user_id = user.id
    return user


def require_active_session(request: Request, user: AuthUser = Depends(get_current_user)) -> AuthUser:
    '''Reject requests whose ``session-timestamp`` cookie is missing or stale.'''

    settings = get_settings()
    stamp = parse_session_timestamp(request.cookies.get(SESSION_TIMESTAMP_COOKIE))
    if is_session_expired(stamp, timeout_ms=settings.session_timeout_ms):
        raise SessionExpiredError()
    return user


def require_admin(
    user: AuthUser = Depends(get_current_user),
    datastore: DataStore = Depends(get_datastore),
) -> Dict[str, Any]:
    with database_errors('Failed to load user profile'):
        profile = datastore.select_one('profiles', {'user_id': user.id})
    if profile is None:
        raise NotFoundError('User profile could not be loaded.', error='Profile not found')
    if profile.get('role') != 'admin':
        raise ForbiddenError('Access denied. Admin role required to access this resource.')
    return profile


def get_ai_client(request: Request) -> OpenAIClient:
    client = request.app.state.ai_client
    if client is None:
        raise ConfigurationError('AI service is not configured. Please contact support.')
    return client


def get_billing(request: Request) -> BillingService:
    billing: BillingService = request.app.state.billing
    if not billing.configured:
        raise ConfigurationError('Stripe not configured')
    return billing
