'''HTTP error taxonomy and the JSON envelope it renders to.'''

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from ..services.datastore import DataStoreError
from ..utils.logger import get_logger, log_error

logger = get_logger('airad.api.errors')

AUTH_REQUIRED_MESSAGE = 'Authentication required. Please sign in to access this resource.'


class APIError(Exception):
    '''Base class for errors that map onto an HTTP status and envelope.'''

    status_code = 500
    error = 'Internal Server Error'
    default_message = 'An unexpected error occurred. Please try again.'

    def __init__(self, message: Optional[str] = None, *, error: Optional[str] = None, **extra: Any) -> None:
        self.message = message or self.default_message
        if error is not None:
            self.error = error
        self.extra = extra
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'success': False, 'error': self.error, 'message': self.message}
        payload.update(self.extra)
        return payload


class UnauthorizedError(APIError):
    status_code = 401
    error = 'Unauthorized'
    default_message = AUTH_REQUIRED_MESSAGE


class SessionExpiredError(APIError):
    status_code = 401
    error = 'Session Expired'
    default_message = 'Your session has expired due to inactivity. Please sign in again.'

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message, code='SESSION_EXPIRED')


class ForbiddenError(APIError):
    status_code = 403
    error = 'Forbidden'
    default_message = 'You do not have permission to access this resource.'


class NotFoundError(APIError):
    status_code = 404
    error = 'Not Found'
    default_message = 'Resource not found'


class ValidationError(APIError):
    status_code = 400
    error = 'Validation Error'
    default_message = 'Request validation failed'

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        field_errors: Optional[Dict[str, str]] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        error: Optional[str] = None,
    ) -> None:
        extra: Dict[str, Any] = {}
        if field_errors is not None:
            extra['validationErrors'] = field_errors
        if errors is not None:
            extra['errors'] = errors
        super().__init__(message, error=error, **extra)

    @classmethod
    def for_field(cls, field: str, message: str) -> 'ValidationError':
        return cls(message, field_errors={field: message}, errors=[{'field': field, 'message': message}])


class InvalidRequestError(APIError):
    status_code = 400
    error = 'Invalid Request'
    default_message = 'Request body must be valid JSON'


class PayloadTooLargeError(APIError):
    status_code = 413
    error = 'File Too Large'


class DatabaseError(APIError):
    status_code = 500
    error = 'Database Error'
    default_message = 'A database error occurred.'


class ConfigurationError(APIError):
    status_code = 500
    error = 'Configuration Error'
    default_message = 'Service is not configured. Please contact support.'


class InternalServerError(APIError):
    status_code = 500


@contextmanager
def database_errors(message: str) -> Iterator[None]:
    '''Convert datastore failures inside the block into a DatabaseError.'''

    try:
        yield
    except DataStoreError as exc:
        raise DatabaseError(message) from exc


def _clean_message(message: str) -> str:
    prefix = 'Value error, '
    return message[len(prefix):] if message.startswith(prefix) else message


def format_validation_errors(raw_errors: List[Dict[str, Any]]) -> ValidationError:
    '''Translate pydantic error dicts into a :class:`ValidationError`.'''

    field_errors: Dict[str, str] = {}
    errors: List[Dict[str, Any]] = []
    for item in raw_errors:
        location = [str(part) for part in item.get('loc', ()) if part != 'body']
        field = '.'.join(location)
        message = _clean_message(str(item.get('msg', 'Invalid value')))
        errors.append({'field': field, 'message': message, 'code': item.get('type')})
        if location:
            field_errors.setdefault(location[0], message)
    summary = errors[0]['message'] if len(errors) == 1 else None
    return ValidationError(summary, field_errors=field_errors, errors=errors)


def validation_error_from(exc: PydanticValidationError, message: str) -> ValidationError:
    error = format_validation_errors(exc.errors(include_url=False))
    error.message = message
    return error


def register_exception_handlers(app: FastAPI) -> None:
    '''Render every failure in the ``{success, error, message}`` envelope.'''

    @app.exception_handler(APIError)
    async def _api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                'Request failed.',
                extra={'context': {'path': request.url.path, 'error': exc.error, 'message': exc.message}},
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        raw_errors = list(exc.errors())
        if any(item.get('type') == 'json_invalid' for item in raw_errors):
            error: APIError = InvalidRequestError()
        else:
            error = format_validation_errors(raw_errors)
        return JSONResponse(status_code=error.status_code, content=error.to_payload())

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        log_error(exc, context={'path': request.url.path, 'method': request.method})
        error = InternalServerError()
        return JSONResponse(status_code=error.status_code, content=error.to_payload())
