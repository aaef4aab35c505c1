"""
Service error taxonomy.

Every error carries the HTTP status it maps to; `main.py` turns them into
the standard response envelope.
"""

from __future__ import annotations


class ServiceError(RuntimeError):
    status_code = 500

    def __init__(self, message: str, *, data: object = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data


# No credential presented.
class Unauthenticated(ServiceError):
    status_code = 401


# Bad signature, malformed or expired token.
class TokenInvalid(ServiceError):
    status_code = 403


class InvalidCredentials(TokenInvalid):
    status_code = 401


class Forbidden(ServiceError):
    status_code = 403


class ValidationFailed(ServiceError):
    status_code = 400


class FetchFailed(ServiceError):
    status_code = 502


class StoreWriteFailed(ServiceError):
    status_code = 500


class QueryFailed(ServiceError):
    status_code = 500
