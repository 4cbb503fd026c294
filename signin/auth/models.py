from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

GOOGLE_PROVIDER_ID = "google.com"


@dataclass(frozen=True)
class AuthUser:
    """User signed in to the backend auth service."""

    uid: str
    provider_id: str = GOOGLE_PROVIDER_ID
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None


@dataclass(frozen=True)
class ProviderUser:
    """Profile claims of the user signed in to the identity provider."""

    subject: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None


@dataclass(frozen=True)
class ProviderTokens:
    """Result of a completed consent flow."""

    access_token: str
    id_token: Optional[str] = None
    user: Optional[ProviderUser] = None


@dataclass(frozen=True)
class Credential:
    """Provider tokens in the shape the backend service exchanges for a session."""

    provider_id: str
    id_token: str
    access_token: Optional[str] = None

    @classmethod
    def google(cls, id_token: str, access_token: Optional[str]) -> "Credential":
        return cls(provider_id=GOOGLE_PROVIDER_ID, id_token=id_token, access_token=access_token)


@dataclass
class BackendSession:
    """Backend tokens for the current user (kept in memory only)."""

    user: AuthUser
    id_token: str
    refresh_token: str
    expires_at: float  # unix seconds
