'''HTTP middleware: request context, page auth redirects and CSRF enforcement.'''

from __future__ import annotations

import hmac
import time
import uuid
from typing import Awaitable, Callable
from urllib.parse import quote

from fastapi import Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from ..session.csrf import CSRF_COOKIE, CSRF_HEADER, CsrfError, requires_csrf_protection
from ..utils.config import get_settings
from ..utils.logger import clear_correlation_id, get_logger, set_correlation_id
from ..utils.validators import safe_redirect_path
from .dependencies import resolve_user
from .errors import ForbiddenError

logger = get_logger('airad.api.middleware')

CallNext = Callable[[Request], Awaitable[Response]]

PROTECTED_PREFIXES = (
    '/dashboard',
    '/transcribe',
    '/generate',
    '/templates',
    '/brand-templates',
    '/macros',
    '/billing',
    '/settings',
    '/admin',
    '/productivity',
)
AUTH_PAGES = ('/login', '/signup')
CSRF_EXEMPT_PATHS = ('/api/stripe/webhook',)


def is_protected_page(path: str) -> bool:
    return any(path == prefix or path.startswith(prefix + '/') for prefix in PROTECTED_PREFIXES)


async def request_context_middleware(request: Request, call_next: CallNext) -> Response:
    '''Bind a trace identifier to the request and log its outcome.'''

    trace_id = request.headers.get('x-trace-id') or str(uuid.uuid4())
    request.state.trace_id = trace_id
    set_correlation_id(trace_id)
    start_time = time.perf_counter()
    context = {'method': request.method, 'path': request.url.path}

    try:
        response = await call_next(request)
    except Exception:
        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        logger.exception('Request failed.', extra={'context': {**context, 'duration_ms': duration_ms}})
        clear_correlation_id()
        raise

    duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
    logger.info(
        'Request complete.',
        extra={'context': {**context, 'status_code': response.status_code, 'duration_ms': duration_ms}},
    )
    response.headers.setdefault('X-Trace-Id', trace_id)
    clear_correlation_id()
    return response


async def page_auth_middleware(request: Request, call_next: CallNext) -> Response:
    '''Redirect page requests according to the caller's sign-in state.

    API routes are left alone; they answer 401 themselves.
    '''

    path = request.url.path
    if path.startswith('/api/'):
        return await call_next(request)

    guarded = is_protected_page(path)
    if not (guarded or path == '/' or path in AUTH_PAGES):
        return await call_next(request)

    user = await run_in_threadpool(resolve_user, request)
    if user is None:
        if guarded:
            return RedirectResponse(f'/login?redirect={quote(path, safe="/")}', status_code=307)
        return await call_next(request)

    if path == '/':
        return RedirectResponse('/dashboard', status_code=307)
    if path in AUTH_PAGES:
        target = safe_redirect_path(request.query_params.get('redirect'))
        return RedirectResponse(target, status_code=307)
    return await call_next(request)


async def csrf_middleware(request: Request, call_next: CallNext) -> Response:
    '''Double-submit check: the ``csrf-token`` cookie must match the header.

    Only active when ``CSRF_ENFORCE`` is set.
    '''

    path = request.url.path
    if (
        not get_settings().CSRF_ENFORCE
        or not path.startswith('/api/')
        or path in CSRF_EXEMPT_PATHS
        or not requires_csrf_protection(request.method)
    ):
        return await call_next(request)

    cookie = request.cookies.get(CSRF_COOKIE) or ''
    header = request.headers.get(CSRF_HEADER) or ''
    if not cookie or not header or not hmac.compare_digest(cookie, header):
        logger.warning('CSRF check failed.', extra={'context': {'path': path, 'method': request.method}})
        error = ForbiddenError(str(CsrfError()), error='Invalid CSRF Token')
        return JSONResponse(status_code=error.status_code, content=error.to_payload())
    return await call_next(request)
