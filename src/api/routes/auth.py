'''Auth provider callback: code exchange and post-login redirect.'''

from __future__ import annotations

import time
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse

from ...services.auth import ACCESS_TOKEN_COOKIE, MOCK_AUTH_COOKIE, AuthClient, AuthError
from ...session.activity import SESSION_TIMESTAMP_COOKIE
from ...utils.config import get_settings
from ...utils.logger import get_logger
from ...utils.validators import safe_redirect_path
from ..dependencies import get_auth_client

logger = get_logger('airad.api.auth')

router = APIRouter(prefix='/api/auth', tags=['auth'])

CALLBACK_ERROR_REDIRECT = '/login?error=auth_callback_error'


@router.get('/callback')
def auth_callback(
    code: Optional[str] = None,
    next: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    code_verifier: Optional[str] = None,
    auth: AuthClient = Depends(get_auth_client),
) -> RedirectResponse:
    '''Exchange ``code`` for a session and send the user on to ``next``.'''

    if error:
        logger.error(
            'Auth provider returned an error.',
            extra={'context': {'error': error, 'description': error_description}},
        )
        return RedirectResponse(f'/login?error={quote(error_description or error, safe="")}', status_code=307)
    if not code:
        logger.error('Auth callback called without a code.')
        return RedirectResponse(CALLBACK_ERROR_REDIRECT, status_code=307)

    try:
        session = auth.exchange_code_for_session(code, code_verifier)
    except AuthError as exc:
        logger.error('Code exchange failed.', extra={'context': {'error': str(exc)}})
        return RedirectResponse(CALLBACK_ERROR_REDIRECT, status_code=307)

    settings = get_settings()
    secure = settings.ENVIRONMENT == 'prod'
    response = RedirectResponse(safe_redirect_path(next), status_code=307)
    cookie_name = MOCK_AUTH_COOKIE if auth.use_mock else ACCESS_TOKEN_COOKIE
    response.set_cookie(
        cookie_name,
        session['access_token'],
        httponly=True,
        samesite='lax',
        secure=secure,
        max_age=60 * 60 * 24 * 7,
    )
    response.set_cookie(
        SESSION_TIMESTAMP_COOKIE,
        str(int(time.time() * 1000)),
        samesite='lax',
        secure=secure,
        max_age=settings.SESSION_TIMEOUT_MINUTES * 60,
    )
    return response
