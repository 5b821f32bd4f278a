"""Errors raised by the immers client"""
from typing import Optional


class ImmersError(Exception):
    """Base class for immers client errors"""
    pass


class AuthorizationError(ImmersError):
    """Popup blocked, authorization denied or cancelled, or no token granted"""
    pass


class FetchError(ImmersError):
    """A protocol request returned a non-2xx status"""

    def __init__(self, status: int, body: Optional[str] = None, message: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(message or f"Object fetch error {status}")


class PostError(FetchError):
    def __init__(self, status: int, body: Optional[str] = None):
        super().__init__(status, body, f"Error posting activity: {status} {body or ''}".rstrip())


class ProxyUnavailable(ImmersError):
    """Untrusted IRI and the home immer advertises no object proxy"""
    pass


class InvalidAddress(ImmersError):
    """Write attempted against an untrusted outbox or endpoint"""
    pass


class ValidationError(ImmersError):
    pass


class LoginRequired(ImmersError):
    pass
