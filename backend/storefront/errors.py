# Overview: Domain exception taxonomy shared by services, routes, and the scheduler.

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for errors that carry a client-visible reason."""
    http_status = 400


class ConfigurationError(Exception):
    """Fatal configuration problem; the app or trigger must not proceed."""
    pass


class ValidationError(StorefrontError):
    """Bad input rejected before any state mutation."""
    http_status = 400


class NotFoundError(StorefrontError):
    http_status = 404


class InvalidTransition(StorefrontError):
    """Requested edge is not part of the state machine; state untouched."""
    http_status = 409


class PaidOrderNotCancellable(InvalidTransition):
    """A PAID order must be refunded before it can be cancelled."""
    pass


class ConcurrencyConflict(StorefrontError):
    """Row changed between read and conditional write."""
    http_status = 409


class TokenNotFound(StorefrontError):
    http_status = 404


class OrderNotReady(StorefrontError):
    http_status = 409


class AlreadyRedeemed(StorefrontError):
    http_status = 409


class AuthError(StorefrontError):
    http_status = 401


class PermissionDenied(StorefrontError):
    http_status = 403


def error_body(exc: StorefrontError) -> dict:
    return {"error": str(exc), "code": type(exc).__name__}
