from __future__ import annotations

from typing import Callable, Optional, Protocol

from signin.auth.config import ProviderOptions
from signin.auth.models import AuthUser, Credential, ProviderTokens, ProviderUser

AuthStateListener = Callable[[Optional[AuthUser]], None]


class Subscription(Protocol):
    """Handle returned by `AuthProvider.subscribe`; cancelling twice is a no-op."""

    def cancel(self) -> None: ...


class Presenter(Protocol):
    """
    Surface the consent UI is shown on (a browser window, a system browser, ...).
    """

    def present(self, url: str) -> None:
        """Show the provider's consent page at `url`."""


class IdentityProvider(Protocol):
    """
    Federated identity client (Google Sign-In).
    """

    client_id: Optional[str]

    @property
    def current_user(self) -> Optional[ProviderUser]: ...

    def handle(self, url: str) -> bool:
        """
        Complete a pending sign-in with a redirect URL.

        Returns True if the URL belonged to the pending request.
        """

    async def sign_in(self, presenter: Presenter) -> ProviderTokens:
        """Present consent and wait for the redirect; raises AuthError on failure."""

    def sign_out(self) -> None:
        """Forget the locally signed-in provider user."""


class AuthProvider(Protocol):
    """
    Backend auth service client: owns the session and publishes auth-state changes.
    """

    options: ProviderOptions

    @property
    def current_user(self) -> Optional[AuthUser]: ...

    def subscribe(self, listener: AuthStateListener) -> Subscription:
        """
        Register an auth-state listener.

        The listener runs once with the current user, then on every sign-in/sign-out.
        """

    async def sign_in(self, credential: Credential) -> AuthUser: ...

    def sign_out(self) -> None: ...
