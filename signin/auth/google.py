"""
Google Sign-In client: OIDC authorization-code flow with PKCE.

`sign_in()` presents the consent URL and suspends until the provider redirects back
and `handle(url)` completes the pending request (or the user cancels).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from signin.auth import oidc
from signin.auth.config import AuthConfig, ProviderOptions
from signin.auth.errors import AuthError, ConfigurationError, RejectedError, SignInCancelled
from signin.auth.models import ProviderTokens, ProviderUser
from signin.auth.provider import Presenter
from signin.auth.util import random_token, strip_query

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/oauth/callback"


@dataclass
class _PendingSignIn:
    state: str
    nonce: str
    verifier: str
    redirect_uri: str
    future: "asyncio.Future[str]"


class GoogleSignIn:
    def __init__(self, cfg: AuthConfig, options: ProviderOptions) -> None:
        self._cfg = cfg
        self._options = options
        self.client_id: Optional[str] = None
        self._pending: Optional[_PendingSignIn] = None
        self._user: Optional[ProviderUser] = None

    @property
    def current_user(self) -> Optional[ProviderUser]:
        return self._user

    @property
    def redirect_uri(self) -> str:
        if self._cfg.public_base_url:
            return f"{self._cfg.public_base_url}{CALLBACK_PATH}"
        scheme = self._options.url_scheme
        if not scheme:
            raise ConfigurationError("No redirect available: set AUTH_PUBLIC_BASE_URL or REVERSED_CLIENT_ID")
        return f"{scheme}:/oauthredirect"

    def _accepts(self, url: str, pending: _PendingSignIn) -> bool:
        target = strip_query(url)
        if target == strip_query(pending.redirect_uri):
            return True
        # Any URL on our custom scheme is ours (the OS routes only that scheme to us).
        scheme = (self._options.url_scheme or "").lower()
        return bool(scheme) and urlsplit(url).scheme.lower() == scheme

    def handle(self, url: str) -> bool:
        pending = self._pending
        if pending is None or pending.future.done():
            return False
        if not self._accepts(url, pending):
            return False

        params = parse_qs(urlsplit(url).query)
        state = (params.get("state") or [""])[0]
        if not state or state != pending.state:
            logger.warning("Ignoring redirect with mismatched OAuth state")
            return False

        error = (params.get("error") or [""])[0]
        code = (params.get("code") or [""])[0]
        outcome: Optional[AuthError] = None
        if error == "access_denied":
            outcome = SignInCancelled()
        elif error:
            desc = (params.get("error_description") or [""])[0]
            outcome = RejectedError(f"Sign-in failed: {desc or error}")
        elif not code:
            outcome = RejectedError("Sign-in failed: missing authorization code")

        self._resolve(pending, code=code, error=outcome)
        return True

    @staticmethod
    def _resolve(pending: _PendingSignIn, *, code: str = "", error: Optional[AuthError] = None) -> None:
        def _settle() -> None:
            if pending.future.done():
                return
            if error is not None:
                pending.future.set_exception(error)
            else:
                pending.future.set_result(code)

        # handle() may be called from a worker thread (sync route, CLI forwarder).
        pending.future.get_loop().call_soon_threadsafe(_settle)

    async def sign_in(self, presenter: Presenter) -> ProviderTokens:
        client_id = self.client_id
        if not client_id:
            raise ConfigurationError("No client ID configured for Google Sign-In")
        if presenter is None:
            raise ConfigurationError("There is no window to present the sign-in flow")

        verifier = random_token(32)  # 43+ chars (base64url) -> valid PKCE verifier
        pending = _PendingSignIn(
            state=random_token(32),
            nonce=random_token(32),
            verifier=verifier,
            redirect_uri=self.redirect_uri,
            future=asyncio.get_running_loop().create_future(),
        )
        url = await asyncio.to_thread(
            oidc.build_authorize_url,
            self._cfg,
            client_id=client_id,
            redirect_uri=pending.redirect_uri,
            state=pending.state,
            nonce=pending.nonce,
            code_challenge=oidc.pkce_challenge(verifier),
        )
        # Checked after the await: another request may have started while discovery loaded.
        previous = self._pending
        if previous is not None:
            logger.info("Superseding an unfinished sign-in request")
            self._resolve(previous, error=SignInCancelled())
        self._pending = pending
        try:
            presenter.present(url)
            code = await pending.future
        finally:
            if self._pending is pending:
                self._pending = None

        tokens = await asyncio.to_thread(
            oidc.exchange_code_for_tokens,
            self._cfg,
            client_id=client_id,
            client_secret=self._options.client_secret,
            redirect_uri=pending.redirect_uri,
            code=code,
            code_verifier=pending.verifier,
        )
        access_token = str(tokens.get("access_token") or "").strip()
        id_token = str(tokens.get("id_token") or "").strip() or None
        if not access_token:
            raise RejectedError("Missing access_token in token response")

        user = None
        if id_token:
            claims = oidc.unverified_claims(id_token)
            if str(claims.get("nonce") or "") != pending.nonce:
                raise RejectedError("Nonce mismatch")
            user = ProviderUser(
                subject=str(claims.get("sub") or ""),
                email=str(claims.get("email") or "").strip() or None,
                name=str(claims.get("name") or "").strip() or None,
                picture=str(claims.get("picture") or "").strip() or None,
            )
        self._user = user
        logger.info("Google sign-in completed (id_token=%s)", "present" if id_token else "absent")
        return ProviderTokens(access_token=access_token, id_token=id_token, user=user)

    def sign_out(self) -> None:
        self._user = None
