'''FastAPI application for the AI Radiologist backend.'''

from __future__ import annotations

import tomllib
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI

from ..services.auth import AuthClient
from ..services.billing import BillingService
from ..services.datastore import DataStore
from ..services.llm import OpenAIClient
from ..utils.config import get_settings
from ..utils.logger import get_logger
from .errors import register_exception_handlers
from .middleware import csrf_middleware, page_auth_middleware, request_context_middleware
from .routes import router

logger = get_logger(__name__)

PYPROJECT_PATH = Path(__file__).resolve().parents[2] / 'pyproject.toml'
_UNSET: Any = object()


def _load_version() -> str:
    if not PYPROJECT_PATH.exists():
        return '0.1.0'

    try:
        data = tomllib.loads(PYPROJECT_PATH.read_text(encoding='utf-8'))
    except (tomllib.TOMLDecodeError, OSError):
        return '0.1.0'

    return data.get('project', {}).get('version', '0.1.0')


APP_VERSION = _load_version()


def _default_ai_client() -> Optional[OpenAIClient]:
    if get_settings().OPENAI_API_KEY is None:
        logger.warning('OPENAI_API_KEY is not set; AI routes will report a configuration error.')
        return None
    return OpenAIClient()


def create_app(
    *,
    datastore: Optional[DataStore] = None,
    auth: Optional[AuthClient] = None,
    ai_client: Optional[OpenAIClient] = _UNSET,
    billing: Optional[BillingService] = None,
) -> FastAPI:
    '''Build the application; collaborators default to ones built from settings.'''

    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            'Service starting.',
            extra={'context': {'environment': settings.ENVIRONMENT, 'mock_backend': app.state.auth.use_mock}},
        )
        yield
        app.state.datastore.close()
        app.state.auth.close()

    app = FastAPI(title=settings.APP_NAME, version=APP_VERSION, lifespan=lifespan)
    app.state.datastore = datastore or DataStore()
    app.state.auth = auth or AuthClient()
    app.state.ai_client = _default_ai_client() if ai_client is _UNSET else ai_client
    app.state.billing = billing or BillingService()

    register_exception_handlers(app)
    # Registered innermost first; the request context wraps everything.
    app.middleware('http')(csrf_middleware)
    app.middleware('http')(page_auth_middleware)
    app.middleware('http')(request_context_middleware)

    app.include_router(router)

    @app.get('/healthz', tags=['system'])
    async def health_check() -> dict[str, str]:
        '''Simple readiness endpoint.'''
        return {'status': 'ok'}

    @app.get('/version', tags=['system'])
    async def version() -> dict[str, str]:
        '''Return the service version derived from pyproject or fallback.'''
        return {'version': APP_VERSION}

    return app
