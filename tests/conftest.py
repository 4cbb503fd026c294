"""
Pytest config.

Tests run from a checkout, so local imports like `import signin` rely on the repo
root being on sys.path. We pin that here so tests can always import the local
`signin/` package, even without `pip install -e .`.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional
from urllib.parse import parse_qs, urlsplit

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from signin.auth import oidc  # noqa: E402
from signin.auth.config import AuthConfig, ProviderOptions, load_auth_config  # noqa: E402
from signin.auth.errors import ConfigurationError, RejectedError, SignInCancelled  # noqa: E402
from signin.auth.models import AuthUser, Credential, ProviderTokens  # noqa: E402

_ENV_VARS = (
    "SIGNIN_PROVIDER_CONFIG",
    "OIDC_DISCOVERY_URL",
    "OIDC_CLIENT_SECRET",
    "AUTH_PUBLIC_BASE_URL",
    "AUTH_REQUEST_TIMEOUT_SECONDS",
    "IDENTITY_TOOLKIT_URL",
    "SECURE_TOKEN_URL",
    "FIREBASE_AUTH_EMULATOR_HOST",
)

CLIENT_ID = "123-abc.apps.googleusercontent.com"
REVERSED_CLIENT_ID = "com.googleusercontent.apps.123-abc"


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch):
    """
    Config is cached process-wide; every test starts from a clean environment and
    an empty discovery cache so nothing leaks between tests (or from the shell).
    """
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    load_auth_config.cache_clear()
    oidc._discovery_cache.clear()
    yield
    load_auth_config.cache_clear()
    oidc._discovery_cache.clear()


@pytest.fixture
def options() -> ProviderOptions:
    return ProviderOptions(
        client_id=CLIENT_ID,
        reversed_client_id=REVERSED_CLIENT_ID,
        api_key="test-api-key",
        project_id="signin-example",
    )


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(
        provider_config_path="GoogleService-Info.plist",
        oidc_discovery_url="https://accounts.google.com/.well-known/openid-configuration",
        oidc_client_secret=None,
        public_base_url="http://testserver",
        identity_toolkit_url="https://identitytoolkit.googleapis.com/v1",
        secure_token_url="https://securetoken.googleapis.com/v1",
        request_timeout_seconds=5.0,
    )


class FakeSubscription:
    def __init__(self, owner: "FakeAuth", listener: Callable[[Optional[AuthUser]], None]) -> None:
        self.owner = owner
        self.listener = listener
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if self in self.owner.subscriptions:
            self.owner.subscriptions.remove(self)


class FakeAuth:
    """In-memory backend auth provider."""

    def __init__(self, options: ProviderOptions, user: Optional[AuthUser] = None) -> None:
        self.options = options
        self._user = user
        self.subscriptions: List[FakeSubscription] = []
        self.credentials: List[Credential] = []
        self.display_name: Optional[str] = "Ada Lovelace"
        self.sign_in_error: Optional[Exception] = None
        self.sign_out_error: Optional[Exception] = None
        self.sign_out_calls = 0

    @property
    def current_user(self) -> Optional[AuthUser]:
        return self._user

    def subscribe(self, listener: Callable[[Optional[AuthUser]], None]) -> FakeSubscription:
        sub = FakeSubscription(self, listener)
        self.subscriptions.append(sub)
        listener(self._user)
        return sub

    def set_user(self, user: Optional[AuthUser]) -> None:
        self._user = user
        for sub in list(self.subscriptions):
            sub.listener(user)

    async def sign_in(self, credential: Credential) -> AuthUser:
        if self.sign_in_error is not None:
            raise self.sign_in_error
        self.credentials.append(credential)
        user = AuthUser(uid="uid-1", email="ada@example.com", display_name=self.display_name)
        self.set_user(user)
        return user

    def sign_out(self) -> None:
        self.sign_out_calls += 1
        if self.sign_out_error is not None:
            raise self.sign_out_error
        self.set_user(None)


class FakeIdentity:
    """
    Identity client that "presents" a fixed consent URL and waits for `handle()`.
    A redirect with `error=access_denied` cancels; any other redirect completes.
    """

    consent_url = "https://accounts.example.com/consent"

    def __init__(self) -> None:
        self.client_id: Optional[str] = None
        self.current_user = None
        self.tokens = ProviderTokens(access_token="ya29.access", id_token="eyJ.id.token")
        self.presented: List[str] = []
        self.sign_out_calls = 0
        self.events: List[str] = []
        self._future: Optional["asyncio.Future[None]"] = None

    def handle(self, url: str) -> bool:
        fut = self._future
        if fut is None or fut.done():
            return False
        params = parse_qs(urlsplit(url).query)
        error = (params.get("error") or [""])[0]
        if error == "access_denied":
            fut.set_exception(SignInCancelled())
        elif error:
            fut.set_exception(RejectedError(f"Sign-in failed: {error}"))
        else:
            fut.set_result(None)
        return True

    async def sign_in(self, presenter) -> ProviderTokens:
        if not self.client_id:
            raise ConfigurationError("No client ID configured for Google Sign-In")
        if presenter is None:
            raise ConfigurationError("There is no window to present the sign-in flow")
        self._future = asyncio.get_running_loop().create_future()
        url = f"{self.consent_url}?client_id={self.client_id}"
        self.presented.append(url)
        presenter.present(url)
        await self._future
        return self.tokens

    def sign_out(self) -> None:
        self.sign_out_calls += 1
        self.events.append("identity.sign_out")


class RecordingPresenter:
    def __init__(self) -> None:
        self.urls: List[str] = []

    def present(self, url: str) -> None:
        self.urls.append(url)


@pytest.fixture
def fake_auth(options: ProviderOptions) -> FakeAuth:
    return FakeAuth(options)


@pytest.fixture
def fake_identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def presenter() -> RecordingPresenter:
    return RecordingPresenter()
