from __future__ import annotations

import hashlib
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import jwt  # PyJWT
import requests

from signin.auth.config import AuthConfig
from signin.auth.errors import ConfigurationError, NetworkError, RejectedError
from signin.auth.util import b64url

_discovery_cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]] = {}

OIDC_SCOPES = "openid email profile"


def _get_discovery(cfg: AuthConfig) -> Dict[str, Any]:
    """
    Fetch OIDC discovery document from provider.
    Caches result for 1 hour per discovery URL.
    """
    discovery_url = cfg.oidc_discovery_url
    ts, cached = _discovery_cache.get(discovery_url, (0.0, None))
    now = time.time()
    if cached is not None and now - ts < 3600:
        return cached
    try:
        r = requests.get(discovery_url, timeout=cfg.request_timeout_seconds)
        r.raise_for_status()
        data = r.json()
    except requests.RequestException as e:
        raise NetworkError(f"Could not load the sign-in provider configuration: {e}") from e
    except ValueError as e:
        raise RejectedError("Invalid OIDC discovery document") from e
    if not isinstance(data, dict):
        raise RejectedError("Invalid OIDC discovery document")
    _discovery_cache[discovery_url] = (now, data)
    return data


def _endpoint(cfg: AuthConfig, name: str) -> str:
    disc = _get_discovery(cfg)
    value = str(disc.get(name) or "")
    if not value:
        raise RejectedError(f"OIDC discovery missing {name}")
    return value


def build_authorize_url(
    cfg: AuthConfig,
    *,
    client_id: str,
    redirect_uri: str,
    state: str,
    nonce: str,
    code_challenge: str,
) -> str:
    """
    Build the consent URL for the provider.
    Uses PKCE (Proof Key for Code Exchange) so installed-app clients need no secret.
    """
    if not client_id:
        raise ConfigurationError("OIDC client ID not configured")

    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": OIDC_SCOPES,
        "state": state,
        "nonce": nonce,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{_endpoint(cfg, 'authorization_endpoint')}?{urlencode(params)}"


def exchange_code_for_tokens(
    cfg: AuthConfig,
    *,
    client_id: str,
    client_secret: Optional[str],
    redirect_uri: str,
    code: str,
    code_verifier: str,
) -> Dict[str, Any]:
    """
    Exchange authorization code for tokens (id_token, access_token).
    Uses PKCE code_verifier; the client secret is sent only when configured.
    """
    payload = {
        "client_id": client_id,
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "code_verifier": code_verifier,
    }
    if client_secret:
        payload["client_secret"] = client_secret

    token_endpoint = _endpoint(cfg, "token_endpoint")
    try:
        r = requests.post(token_endpoint, data=payload, timeout=cfg.request_timeout_seconds)
    except requests.RequestException as e:
        raise NetworkError(f"Token exchange failed: {e}") from e
    if r.status_code >= 400:
        # Avoid leaking sensitive info; include minimal context.
        raise RejectedError(f"Token exchange failed (status={r.status_code})")
    try:
        data = r.json()
    except ValueError as e:
        raise RejectedError("Invalid token response") from e
    if not isinstance(data, dict):
        raise RejectedError("Invalid token response")
    return data


def unverified_claims(id_token: str) -> Dict[str, Any]:
    """
    Read ID token claims without checking the signature.

    The backend service verifies the token during credential exchange; claims read
    here are only used to bind the response to our nonce and to show a profile.
    """
    try:
        claims = jwt.decode(id_token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise RejectedError("Malformed ID token") from e
    if not isinstance(claims, dict):
        raise RejectedError("Invalid ID token claims")
    return claims


def pkce_challenge(verifier: str) -> str:
    """
    Generate PKCE challenge from verifier using SHA256.
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return b64url(digest)
