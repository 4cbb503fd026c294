from __future__ import annotations

from signin.auth.errors import ConfigurationError, RejectedError
from signin.auth.models import AuthUser, Credential
from signin.auth.provider import AuthProvider, IdentityProvider, Presenter


class AuthController:
    """
    Sign-in/sign-out orchestration over the identity and backend auth clients.

    Both operations raise AuthError on failure; callers decide how to show it.
    Concurrent invocations are not serialized here.
    """

    def __init__(self, auth: AuthProvider, identity: IdentityProvider) -> None:
        self._auth = auth
        self._identity = identity

    async def sign_in(self, presenter: Presenter) -> AuthUser:
        client_id = self._auth.options.client_id
        if not client_id:
            raise ConfigurationError("No client ID found in provider configuration")
        self._identity.client_id = client_id

        tokens = await self._identity.sign_in(presenter)
        if not tokens.id_token:
            raise RejectedError("ID token missing")

        credential = Credential.google(tokens.id_token, tokens.access_token)
        return await self._auth.sign_in(credential)

    async def sign_out(self) -> None:
        self._identity.sign_out()
        self._auth.sign_out()
