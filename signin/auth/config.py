from __future__ import annotations

import json
import os
import plistlib
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from signin.auth.errors import ConfigurationError

GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"
IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1"


@dataclass(frozen=True)
class AuthConfig:
    # Provider configuration bundle (GoogleService-Info.plist or JSON with the same keys)
    provider_config_path: str

    # OIDC
    oidc_discovery_url: str
    oidc_client_secret: Optional[str]  # Only web clients have one; installed-app clients use PKCE alone

    # Redirect handling
    public_base_url: Optional[str]  # When unset, the reversed client ID scheme is used

    # Backend auth service
    identity_toolkit_url: str
    secure_token_url: str

    request_timeout_seconds: float

    @property
    def emulated(self) -> bool:
        return not self.identity_toolkit_url.startswith("https://")


class ProviderOptions(BaseModel):
    """
    Keys read from the provider-issued configuration bundle.

    The bundle format belongs to the provider; unknown keys are ignored.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    client_id: Optional[str] = Field(default=None, alias="CLIENT_ID")
    reversed_client_id: Optional[str] = Field(default=None, alias="REVERSED_CLIENT_ID")
    client_secret: Optional[str] = Field(default=None, alias="CLIENT_SECRET")
    api_key: Optional[str] = Field(default=None, alias="API_KEY")
    project_id: Optional[str] = Field(default=None, alias="PROJECT_ID")
    bundle_id: Optional[str] = Field(default=None, alias="BUNDLE_ID")

    @property
    def url_scheme(self) -> Optional[str]:
        """Custom URL scheme the process registers for redirects (the reversed client ID)."""
        if self.reversed_client_id:
            return self.reversed_client_id
        if self.client_id:
            return ".".join(reversed(self.client_id.split(".")))
        return None


def _env(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load configuration from environment variables.

    FIREBASE_AUTH_EMULATOR_HOST (e.g. `localhost:9099`) points both backend endpoints
    at the local Auth emulator and takes precedence over the explicit URLs.
    """
    timeout = float((os.getenv("AUTH_REQUEST_TIMEOUT_SECONDS", "") or "10").strip() or "10")
    if timeout < 1:
        timeout = 1.0

    identity_toolkit_url = (_env("IDENTITY_TOOLKIT_URL") or IDENTITY_TOOLKIT_URL).rstrip("/")
    secure_token_url = (_env("SECURE_TOKEN_URL") or SECURE_TOKEN_URL).rstrip("/")
    emulator_host = _env("FIREBASE_AUTH_EMULATOR_HOST")
    if emulator_host:
        identity_toolkit_url = f"http://{emulator_host}/identitytoolkit.googleapis.com/v1"
        secure_token_url = f"http://{emulator_host}/securetoken.googleapis.com/v1"

    public_base_url = _env("AUTH_PUBLIC_BASE_URL")
    return AuthConfig(
        provider_config_path=_env("SIGNIN_PROVIDER_CONFIG") or "GoogleService-Info.plist",
        oidc_discovery_url=_env("OIDC_DISCOVERY_URL") or GOOGLE_DISCOVERY_URL,
        oidc_client_secret=_env("OIDC_CLIENT_SECRET"),
        public_base_url=public_base_url.rstrip("/") if public_base_url else None,
        identity_toolkit_url=identity_toolkit_url,
        secure_token_url=secure_token_url,
        request_timeout_seconds=timeout,
    )


def _read_bundle(path: Path) -> Dict[str, Any]:
    raw = path.read_bytes()
    if path.suffix.lower() == ".json":
        data = json.loads(raw.decode("utf-8"))
    else:
        data = plistlib.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("bundle root is not a dictionary")
    return data


def load_provider_options(cfg: AuthConfig) -> ProviderOptions:
    """
    Read the provider configuration bundle named by `cfg.provider_config_path`.

    Raises ConfigurationError if the file is missing or unreadable. A bundle without
    a client ID still loads; sign-in fails later with a ConfigurationError.
    """
    path = Path(cfg.provider_config_path)
    if not path.is_file():
        raise ConfigurationError(f"Provider configuration file not found: {path}")
    try:
        data = _read_bundle(path)
        options = ProviderOptions.model_validate(data)
    except (OSError, ValueError, plistlib.InvalidFileException, ValidationError) as e:
        raise ConfigurationError(f"Invalid provider configuration file {path}: {e}") from e

    if not options.client_secret and cfg.oidc_client_secret:
        options = options.model_copy(update={"client_secret": cfg.oidc_client_secret})
    return options
