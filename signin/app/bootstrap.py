from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from signin.app.controller import AuthController
from signin.app.gate import SessionGate
from signin.auth.backend import IdentityToolkitAuth
from signin.auth.config import AuthConfig, ProviderOptions, load_auth_config, load_provider_options
from signin.auth.errors import ConfigurationError
from signin.auth.google import GoogleSignIn
from signin.auth.provider import AuthProvider, IdentityProvider

logger = logging.getLogger(__name__)


@dataclass
class App:
    """Everything the UI needs, wired once at startup."""

    config: AuthConfig
    options: ProviderOptions
    auth: AuthProvider
    identity: IdentityProvider
    controller: AuthController
    gate: SessionGate


class AppBootstrap:
    """
    One-time process setup: configure both auth clients and expose the URL
    handler that completes an in-flight sign-in.

    Clients can be injected; otherwise they are built from the provider bundle.
    """

    def __init__(
        self,
        cfg: Optional[AuthConfig] = None,
        *,
        options: Optional[ProviderOptions] = None,
        auth: Optional[AuthProvider] = None,
        identity: Optional[IdentityProvider] = None,
    ) -> None:
        self._cfg = cfg
        self._options = options
        self._auth = auth
        self._identity = identity
        self.app: Optional[App] = None

    @property
    def configured(self) -> bool:
        return self.app is not None

    def configure(self) -> App:
        """
        Build the app. Raises ConfigurationError if called twice or if the provider
        bundle cannot be loaded.
        """
        if self.app is not None:
            raise ConfigurationError("The default app has already been configured.")

        cfg = self._cfg or load_auth_config()
        if self._options is not None:
            options = self._options
        elif self._auth is not None:
            options = self._auth.options
        else:
            options = load_provider_options(cfg)

        auth = self._auth or IdentityToolkitAuth(cfg, options)
        identity = self._identity or GoogleSignIn(cfg, options)
        if not options.client_id:
            logger.warning("Provider configuration has no CLIENT_ID; sign-in will fail")

        controller = AuthController(auth, identity)
        self.app = App(
            config=cfg,
            options=options,
            auth=auth,
            identity=identity,
            controller=controller,
            gate=SessionGate(auth, controller),
        )
        logger.info(
            "Configured auth clients (project=%s scheme=%s emulated=%s)",
            options.project_id,
            options.url_scheme,
            cfg.emulated,
        )
        return self.app

    def open_url(self, url: str) -> bool:
        """Forward a redirect URL to the identity client. True if it completed a sign-in."""
        if self.app is None:
            return False
        handled = self.app.identity.handle(url)
        logger.debug("Incoming URL handled=%s", handled)
        return handled
