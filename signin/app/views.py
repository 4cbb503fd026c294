"""
The two screens of the app: Login and Home.

Each view instance owns its error text; a fresh instance (created whenever the
session flips) starts with an empty error.
"""

from __future__ import annotations

import asyncio
import html
import logging
from enum import Enum
from typing import Awaitable, Optional

from signin.app.controller import AuthController
from signin.auth.errors import AuthError, ConfigurationError
from signin.auth.provider import AuthProvider, Presenter

logger = logging.getLogger(__name__)

USERNAME_NOT_FOUND = "Username not found"


class Phase(str, Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


_PAGE = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
<style>
  body {{ font-family: -apple-system, system-ui, sans-serif; display: flex; justify-content: center; }}
  main {{ margin-top: 20vh; text-align: center; }}
  button {{ background: #0a84ff; color: #fff; border: 0; border-radius: 8px; padding: 8px 16px; font-size: 1rem; }}
  .error {{ color: #d00; font-size: 0.8rem; min-height: 1em; }}
</style>
</head>
<body data-revision="{revision}">
<main>
{body}
</main>
<script>
  const events = new EventSource("/api/session/events");
  events.addEventListener("session", (e) => {{
    const data = JSON.parse(e.data);
    if (data.revision !== Number(document.body.dataset.revision)) window.location.reload();
  }});
</script>
</body>
</html>
"""


class _View:
    title = ""

    def __init__(self, controller: AuthController) -> None:
        self._controller = controller
        self.error = ""
        self.phase = Phase.IDLE
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self, label: str, operation: Awaitable[object]) -> None:
        self.error = ""
        self.phase = Phase.AUTHENTICATING
        try:
            await operation
        except ConfigurationError:
            self.phase = Phase.FAILED
            raise
        except AuthError as e:
            logger.info("%s failed (%s): %s", label, e.kind.value, str(e))
            self._fail(str(e) or e.kind.value)
        except Exception as e:
            logger.exception("%s failed unexpectedly: %s", label, str(e))
            self._fail(str(e) or type(e).__name__)
        else:
            self.phase = Phase.AUTHENTICATED

    def _fail(self, message: str) -> None:
        # A newer attempt from this view owns the error text.
        if self._task is None or self._task is asyncio.current_task():
            self.error = message
            self.phase = Phase.FAILED

    def _start(self, label: str, operation: Awaitable[object]) -> "asyncio.Task[None]":
        self._task = asyncio.create_task(self._run(label, operation))
        return self._task

    async def wait(self) -> None:
        """Wait for the operation started from this view, if any."""
        if self._task is not None:
            await self._task

    def _body(self) -> str:
        raise NotImplementedError

    def render(self, revision: int = 0) -> str:
        return _PAGE.format(title=html.escape(self.title), revision=revision, body=self._body())


class LoginView(_View):
    title = "Login"

    def start_sign_in(self, presenter: Presenter) -> "asyncio.Task[None]":
        return self._start("Sign-in", self._controller.sign_in(presenter))

    async def press_sign_in(self, presenter: Presenter) -> None:
        await self.start_sign_in(presenter)

    def _body(self) -> str:
        return (
            "<h1>Login</h1>\n"
            '<form method="post" action="/sign-in">\n'
            f'  <button type="submit">&#128273; Sign in with Google</button>\n'
            "</form>\n"
            f'<p class="error">{html.escape(self.error)}</p>'
        )


class HomeView(_View):
    title = "Home"

    def __init__(self, controller: AuthController, auth: AuthProvider) -> None:
        super().__init__(controller)
        self._auth = auth

    @property
    def greeting(self) -> str:
        user = self._auth.current_user
        name = user.display_name if user is not None else None
        return "Hello " + (name or USERNAME_NOT_FOUND)

    def start_log_out(self) -> "asyncio.Task[None]":
        return self._start("Sign-out", self._controller.sign_out())

    async def press_log_out(self) -> None:
        await self.start_log_out()

    def _body(self) -> str:
        return (
            f'<p class="greeting">&#128075; {html.escape(self.greeting)}</p>\n'
            '<form method="post" action="/sign-out">\n'
            '  <button type="submit">Log Out</button>\n'
            "</form>\n"
            f'<p class="error">{html.escape(self.error)}</p>'
        )
