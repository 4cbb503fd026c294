from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, List, Optional, Union

from signin.app.controller import AuthController
from signin.app.views import HomeView, LoginView
from signin.auth.models import AuthUser
from signin.auth.provider import AuthProvider, Subscription

logger = logging.getLogger(__name__)


class SessionGate:
    """
    Shows Home while a user is signed in and Login otherwise.

    Presence is read synchronously at mount, then kept current by the auth
    provider's state notifications until unmount.
    """

    def __init__(self, auth: AuthProvider, controller: AuthController) -> None:
        self._auth = auth
        self._controller = controller
        self.user_logged_in = False
        self.revision = 0
        self._view: Optional[Union[LoginView, HomeView]] = None
        self._subscription: Optional[Subscription] = None
        self._watchers: List["asyncio.Queue[bool]"] = []

    @property
    def mounted(self) -> bool:
        return self._subscription is not None

    def mount(self) -> None:
        if self._subscription is not None:
            return
        self.user_logged_in = self._auth.current_user is not None
        self._view = self._new_view()
        self._subscription = self._auth.subscribe(self._on_auth_state_changed)
        logger.info("Session gate mounted (logged_in=%s)", self.user_logged_in)

    def unmount(self) -> None:
        if self._subscription is None:
            return
        self._subscription.cancel()
        self._subscription = None
        for q in list(self._watchers):
            q.put_nowait(self.user_logged_in)

    def _new_view(self) -> Union[LoginView, HomeView]:
        if self.user_logged_in:
            return HomeView(self._controller, self._auth)
        return LoginView(self._controller)

    def _on_auth_state_changed(self, user: Optional[AuthUser]) -> None:
        logged_in = user is not None
        if logged_in != self.user_logged_in or self._view is None:
            self.user_logged_in = logged_in
            self._view = self._new_view()
            logger.info("Auth state changed (logged_in=%s)", logged_in)
        self.revision += 1
        for q in list(self._watchers):
            q.put_nowait(logged_in)

    @property
    def view(self) -> Union[LoginView, HomeView]:
        if self._view is None:
            self._view = self._new_view()
        return self._view

    def render(self) -> str:
        return self.view.render(self.revision)

    async def changes(self) -> AsyncIterator[bool]:
        """
        Yield the current presence, then presence after every auth-state
        notification until unmount.
        """
        q: "asyncio.Queue[bool]" = asyncio.Queue()
        self._watchers.append(q)
        try:
            yield self.user_logged_in
            while self.mounted:
                value = await q.get()
                if not self.mounted:
                    break
                yield value
        finally:
            self._watchers.remove(q)
