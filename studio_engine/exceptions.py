"""Error types raised by the engine and mapped to HTTP responses by the app."""

from __future__ import annotations


class StudioError(Exception):
    """Base error carrying an HTTP status code and optional structured detail."""

    def __init__(self, message: str, status_code: int = 500,
                 errors: dict | None = None, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errors = errors or {}
        self.error_code = error_code

    @staticmethod
    def validation(message: str, errors: dict | None = None) -> 'ValidationError':
        return ValidationError(errors or {}, message)

    @staticmethod
    def not_found(message: str = 'Resource not found') -> 'NotFoundError':
        return NotFoundError(message)

    @staticmethod
    def resource_not_registered(key: str) -> 'ResourceNotRegisteredError':
        return ResourceNotRegisteredError(key)

    def to_dict(self) -> dict:
        body = {'error': self.message}
        if self.error_code:
            body['code'] = self.error_code
        if self.errors:
            body['errors'] = self.errors
        return body


class CircularDependencyError(StudioError, RuntimeError):
    """A field's visibility depends, directly or transitively, on itself."""

    def __init__(self, path: list[str]):
        self.path = list(path)
        super().__init__(
            'Circular dependency detected: ' + ' -> '.join(self.path),
            500, error_code='CIRCULAR_DEPENDENCY')


class ValidationError(StudioError):
    """Payload failed its rules; ``errors`` maps attribute -> messages."""

    def __init__(self, errors: dict[str, list[str]], message: str = 'Validation failed'):
        super().__init__(message, 422, errors, 'VALIDATION_ERROR')


class NotFoundError(StudioError):
    def __init__(self, message: str = 'Resource not found'):
        super().__init__(message, 404, error_code='NOT_FOUND')


class ResourceNotRegisteredError(NotFoundError):
    def __init__(self, key: str):
        super().__init__(f"Resource not found: {key}")
        self.error_code = 'RESOURCE_NOT_REGISTERED'
        self.key = key


class ActionNotFoundError(NotFoundError):
    def __init__(self, key: str):
        super().__init__(f"Action not found: {key}")
        self.error_code = 'ACTION_NOT_FOUND'
        self.key = key
