from __future__ import annotations

from enum import Enum
from typing import Optional


class AuthErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    CANCELLED = "cancelled"
    NETWORK = "network"
    REJECTED = "rejected"


class AuthError(Exception):
    """Base error for sign-in/sign-out failures. `str(err)` is safe to display."""

    kind: AuthErrorKind = AuthErrorKind.REJECTED

    def __init__(self, message: str, *, kind: Optional[AuthErrorKind] = None, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code  # provider error code, when there is one
        if kind is not None:
            self.kind = kind


class ConfigurationError(AuthError):
    """Startup misconfiguration (missing client ID, bundle, presenter). Fatal."""

    kind = AuthErrorKind.CONFIGURATION


class SignInCancelled(AuthError):
    kind = AuthErrorKind.CANCELLED

    def __init__(self, message: str = "The user canceled the sign-in flow.") -> None:
        super().__init__(message)


class NetworkError(AuthError):
    kind = AuthErrorKind.NETWORK


class RejectedError(AuthError):
    kind = AuthErrorKind.REJECTED
