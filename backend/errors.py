"""API exception types and the Flask handlers that render them as JSON."""

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from backend.log_utils import get_logger

logger = get_logger(__name__)


class ApiError(Exception):
    status_code = 500
    default_message = 'Internal server error'

    def __init__(self, message=None, **extra):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.extra = extra

    def to_dict(self):
        payload = dict(self.extra)
        payload['error'] = self.message
        return payload


class ValidationError(ApiError):
    status_code = 400
    default_message = 'Invalid request'


class AuthenticationError(ApiError):
    status_code = 401
    default_message = 'Authentication required'


class AuthorizationError(ApiError):
    status_code = 403
    default_message = 'Not allowed'


class NotFoundError(ApiError):
    status_code = 404
    default_message = 'Not found'


class ConflictError(ApiError):
    status_code = 409
    default_message = 'Conflict'


class ExternalDependencyError(ApiError):
    """An external service failed while a required precondition depended on it."""
    status_code = 400
    default_message = 'External service unavailable'


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def _handle_api_error(exc):
        if exc.status_code >= 500:
            logger.error('api_error', error=exc.message, status=exc.status_code)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def _handle_http_exception(exc):
        if not request.path.startswith('/api/'):
            return exc
        return jsonify({'error': exc.description or exc.name}), exc.code

    @app.errorhandler(Exception)
    def _handle_unexpected(exc):
        logger.error('unhandled_exception', error=str(exc), exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500
