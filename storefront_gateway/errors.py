"""
errors.py — Error Taxonomy for the Storefront Gateway

Every public operation either returns a well-formed result or raises exactly one
of the errors defined here. The GraphQL layer turns them into structured errors
whose `code` tells the caller how to remediate (refetch, re-authenticate, fix input).

Errors:
    - NotFoundError:        identity or entity absent (also drives branching)
    - ConflictError:        version mismatch on a cart/order update (refetch and retry)
    - UnauthenticatedError: token invalid, expired or unverifiable
    - UpstreamError:        transport failure or 5xx from an external platform
    - ValidationError:      malformed input (bad version, non-positive quantity, ...)
"""

from typing import Optional

import httpx


class GatewayError(Exception):
    """Base class of all errors surfaced by the gateway."""

    code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, operation: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message
        self.operation = operation
        self.status_code = status_code
        super().__init__(f"{operation}: {message}" if operation else message)


class NotFoundError(GatewayError):
    code = "NOT_FOUND"


class ConflictError(GatewayError):
    """
    Raised when the expected version no longer matches the platform's version.

    Attributes:
        current_version (int | None): The version reported by the platform, if any.
    """

    code = "CONFLICT"

    def __init__(self, message: str, operation: Optional[str] = None, current_version: Optional[int] = None):
        super().__init__(message, operation=operation, status_code=409)
        self.current_version = current_version


class UnauthenticatedError(GatewayError):
    code = "UNAUTHENTICATED"


class UpstreamError(GatewayError):
    code = "UPSTREAM_ERROR"


class ValidationError(GatewayError):
    code = "BAD_USER_INPUT"


def _error_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _current_version(body: dict) -> Optional[int]:
    for error in body.get("errors") or []:
        if isinstance(error, dict) and error.get("currentVersion") is not None:
            return int(error["currentVersion"])
    return None


def map_http_error(operation: str, response: httpx.Response) -> GatewayError:
    """
    Translates an error response from an external platform into the taxonomy.

    Args:
        operation (str): Name of the client operation that issued the request.
        response (httpx.Response): The failed response (status >= 400).

    Returns:
        GatewayError: The matching taxonomy error, ready to be raised.
    """
    status = response.status_code
    body = _error_body(response)
    nested = body.get("error") if isinstance(body.get("error"), dict) else {}
    message = body.get("message") or nested.get("message") or response.reason_phrase or f"HTTP {status}"

    if status == 409:
        return ConflictError(message, operation=operation, current_version=_current_version(body))
    if status == 404:
        return NotFoundError(message, operation=operation, status_code=status)
    if status in (401, 403):
        return UnauthenticatedError(message, operation=operation, status_code=status)
    if status == 400:
        return ValidationError(message, operation=operation, status_code=status)
    return UpstreamError(message, operation=operation, status_code=status)


def wrap_transport_error(operation: str, error: httpx.HTTPError) -> UpstreamError:
    """Wraps a transport level failure (timeout, connection refused, ...) with the operation name."""
    return UpstreamError(f"{type(error).__name__}: {error}", operation=operation)
