"""
Backend auth client for Firebase Authentication (Identity Toolkit REST API).

Holds the signed-in user in memory and notifies listeners whenever user presence
changes. Endpoints:
- accounts:signInWithIdp  exchange provider tokens for a backend session
- token                   refresh the backend ID token
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from signin.auth.config import AuthConfig, ProviderOptions
from signin.auth.errors import ConfigurationError, NetworkError, RejectedError
from signin.auth.models import AuthUser, BackendSession, Credential
from signin.auth.provider import AuthStateListener

logger = logging.getLogger(__name__)

# Refresh this long before the backend ID token actually expires.
_REFRESH_MARGIN_SECONDS = 5 * 60

# Refresh failures that mean the session is gone for good.
_SESSION_REVOKED_CODES = {"TOKEN_EXPIRED", "USER_DISABLED", "USER_NOT_FOUND", "INVALID_REFRESH_TOKEN"}

_EMULATOR_API_KEY = "fake-api-key"


class ListenerSubscription:
    """Cancellable registration of one auth-state listener."""

    def __init__(self, owner: "IdentityToolkitAuth", listener: AuthStateListener) -> None:
        self._owner = owner
        self._listener = listener
        self.active = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self._owner._remove_listener(self)

    def __call__(self, user: Optional[AuthUser]) -> None:
        if self.active:
            self._listener(user)


def _error_code(r: requests.Response) -> str:
    """
    Identity Toolkit errors look like {"error": {"message": "INVALID_IDP_RESPONSE : detail"}}.
    Secure Token errors may use {"error": "invalid_grant", "error_description": ...}.
    """
    try:
        body = r.json()
    except ValueError:
        return f"HTTP_{r.status_code}"
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        msg = str(err.get("message") or "").strip()
    else:
        msg = str(err or "").strip()
    return msg.split(" ", 1)[0].strip() or f"HTTP_{r.status_code}"


class IdentityToolkitAuth:
    def __init__(self, cfg: AuthConfig, options: ProviderOptions) -> None:
        self._cfg = cfg
        self.options = options
        self._session: Optional[BackendSession] = None
        self._subscriptions: List[ListenerSubscription] = []
        self._last_notified_uid: Optional[str] = None

    # ---- state ----

    @property
    def current_user(self) -> Optional[AuthUser]:
        return self._session.user if self._session else None

    def subscribe(self, listener: AuthStateListener) -> ListenerSubscription:
        sub = ListenerSubscription(self, listener)
        self._subscriptions.append(sub)
        # Same contract as the upstream SDKs: fire once with the current state.
        sub(self.current_user)
        return sub

    def _remove_listener(self, sub: ListenerSubscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    def _set_session(self, session: Optional[BackendSession]) -> None:
        self._session = session
        uid = session.user.uid if session else None
        if uid == self._last_notified_uid:
            return
        self._last_notified_uid = uid
        user = self.current_user
        for sub in list(self._subscriptions):
            try:
                sub(user)
            except Exception:
                logger.exception("Auth state listener failed")

    # ---- HTTP ----

    def _api_key(self) -> str:
        key = self.options.api_key
        if key:
            return key
        if self._cfg.emulated:
            return _EMULATOR_API_KEY
        raise ConfigurationError("No API_KEY found in provider configuration")

    def _post(self, url: str, *, json_body: Optional[Dict[str, Any]] = None, form: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            r = requests.post(
                url,
                params={"key": self._api_key()},
                json=json_body,
                data=form,
                timeout=self._cfg.request_timeout_seconds,
            )
        except requests.RequestException as e:
            raise NetworkError(f"Network error while contacting the auth service: {e}") from e
        if r.status_code >= 400:
            code = _error_code(r)
            logger.warning("Auth service rejected request to %s (status=%s code=%s)", url.rsplit("/", 1)[-1], r.status_code, code)
            raise RejectedError(f"The auth service rejected the request ({code})", code=code)
        try:
            data = r.json()
        except ValueError as e:
            raise RejectedError("Invalid response from the auth service") from e
        if not isinstance(data, dict):
            raise RejectedError("Invalid response from the auth service")
        return data

    def _sign_in_with_idp(self, credential: Credential) -> BackendSession:
        post_body = {"id_token": credential.id_token, "providerId": credential.provider_id}
        if credential.access_token:
            post_body["access_token"] = credential.access_token
        data = self._post(
            f"{self._cfg.identity_toolkit_url}/accounts:signInWithIdp",
            json_body={
                "postBody": urlencode(post_body),
                "requestUri": self._cfg.public_base_url or "http://localhost",
                "returnSecureToken": True,
                "returnIdpCredential": True,
            },
        )
        uid = str(data.get("localId") or "").strip()
        id_token = str(data.get("idToken") or "").strip()
        if not uid or not id_token:
            raise RejectedError("The auth service returned no user")
        user = AuthUser(
            uid=uid,
            provider_id=str(data.get("providerId") or credential.provider_id),
            email=str(data.get("email") or "").strip() or None,
            display_name=str(data.get("displayName") or data.get("fullName") or "").strip() or None,
            photo_url=str(data.get("photoUrl") or "").strip() or None,
        )
        return BackendSession(
            user=user,
            id_token=id_token,
            refresh_token=str(data.get("refreshToken") or ""),
            expires_at=time.time() + int(float(data.get("expiresIn") or 3600)),
        )

    def _refresh_tokens(self, refresh_token: str) -> Dict[str, Any]:
        return self._post(
            f"{self._cfg.secure_token_url}/token",
            form={"grant_type": "refresh_token", "refresh_token": refresh_token},
        )

    # ---- operations ----

    async def sign_in(self, credential: Credential) -> AuthUser:
        session = await asyncio.to_thread(self._sign_in_with_idp, credential)
        logger.info("Signed in to the auth service (uid=%s)", session.user.uid)
        self._set_session(session)
        return session.user

    def sign_out(self) -> None:
        if self._session is not None:
            logger.info("Signed out of the auth service (uid=%s)", self._session.user.uid)
        self._set_session(None)

    async def refresh(self) -> Optional[AuthUser]:
        """
        Refresh the backend ID token.

        A revoked or expired session signs the user out (and notifies listeners).
        Network failures propagate without changing state.
        """
        session = self._session
        if session is None:
            return None
        if not session.refresh_token:
            self.sign_out()
            return None
        try:
            data = await asyncio.to_thread(self._refresh_tokens, session.refresh_token)
        except RejectedError as e:
            if e.code in _SESSION_REVOKED_CODES:
                logger.info("Session revoked by the auth service; signing out")
                if self._session is session:
                    self.sign_out()
                return None
            raise
        if self._session is not session:
            # Signed out (or in as someone else) while the refresh was in flight.
            return self.current_user
        session.id_token = str(data.get("id_token") or session.id_token)
        session.refresh_token = str(data.get("refresh_token") or session.refresh_token)
        session.expires_at = time.time() + int(float(data.get("expires_in") or 3600))
        return session.user

    async def get_id_token(self, force_refresh: bool = False) -> Optional[str]:
        session = self._session
        if session is None:
            return None
        if force_refresh or session.expires_at - time.time() < _REFRESH_MARGIN_SECONDS:
            await self.refresh()
        return self._session.id_token if self._session else None
