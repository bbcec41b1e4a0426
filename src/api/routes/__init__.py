'''API route definitions.'''

from fastapi import APIRouter

from . import admin, auth, billing, generate, macros, preferences, templates, transcribe

router = APIRouter()
for module in (preferences, macros, templates, generate, transcribe, admin, billing, auth):
    router.include_router(module.router)

__all__ = ['router']
