"""
HTTP front-end for the sign-in example.

Serves the current view (Login or Home), the two buttons, the OAuth redirect
targets, and a server-sent-event stream the page uses to re-render when the
auth state changes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, StreamingResponse
from pydantic import BaseModel

from signin.app.bootstrap import App, AppBootstrap
from signin.app.gate import SessionGate
from signin.app.views import HomeView, LoginView
from signin.auth.errors import ConfigurationError
from signin.auth.google import CALLBACK_PATH

logger = logging.getLogger(__name__)


class OpenUrlRequest(BaseModel):
    url: str


class BrowserPresenter:
    """Presents the consent page by redirecting the browser that pressed the button."""

    def __init__(self) -> None:
        self.presented: "asyncio.Future[str]" = asyncio.get_running_loop().create_future()

    def present(self, url: str) -> None:
        if not self.presented.done():
            self.presented.set_result(url)


def _sse_event(event_type: str, data: Dict[str, Any]) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


async def _session_events(gate: SessionGate) -> AsyncIterator[str]:
    async for logged_in in gate.changes():
        yield _sse_event("session", {"loggedIn": logged_in, "revision": gate.revision})


def _no_store(resp):
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _redirect_home():
    # 303 so a POSTed button press turns into a GET of the page.
    return _no_store(RedirectResponse(url="/", status_code=303))


def create_app(bootstrap: Optional[AppBootstrap] = None) -> FastAPI:
    """
    Build the FastAPI app. The bootstrap runs once in the lifespan, before any
    request is served; a ConfigurationError there aborts startup.
    """
    bootstrap = bootstrap or AppBootstrap()

    @asynccontextmanager
    async def lifespan(api: FastAPI):
        state = bootstrap.configure()
        state.gate.mount()
        api.state.signin = state
        logger.info("Sign-in example ready")
        try:
            yield
        finally:
            state.gate.unmount()
            logger.info("Sign-in example shutting down")

    api = FastAPI(title="Sign in with Google example", lifespan=lifespan)
    api.state.bootstrap = bootstrap

    def _state(request: Request) -> App:
        return request.app.state.signin

    @api.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.critical("Configuration error: %s", exc)
        return JSONResponse(status_code=500, content={"detail": f"Misconfigured: {exc}"})

    @api.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming HTTP requests."""
        start_time = time.time()
        logger.debug("%s %s", request.method, request.url.path)
        try:
            response = await call_next(request)
            process_time = time.time() - start_time
            logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
            return response
        except Exception as e:
            process_time = time.time() - start_time
            logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
            raise

    @api.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True}

    @api.get("/", response_class=HTMLResponse)
    async def index(request: Request):
        return _no_store(HTMLResponse(_state(request).gate.render()))

    @api.post("/sign-in")
    async def sign_in(request: Request):
        view = _state(request).gate.view
        if not isinstance(view, LoginView):
            return _redirect_home()

        presenter = BrowserPresenter()
        task = view.start_sign_in(presenter)
        done, _ = await asyncio.wait({presenter.presented, task}, return_when=asyncio.FIRST_COMPLETED)
        if presenter.presented in done:
            return _no_store(RedirectResponse(url=presenter.presented.result(), status_code=303))

        presenter.presented.cancel()
        # Failed before consent was shown: the error is on the view, unless it was fatal.
        task.result()
        return _redirect_home()

    @api.get(CALLBACK_PATH)
    async def oauth_callback(request: Request):
        """Redirect target registered with the provider for web clients."""
        state = _state(request)
        view = state.gate.view
        base = state.config.public_base_url or str(request.base_url).rstrip("/")
        url = f"{base}{CALLBACK_PATH}?{request.url.query}"
        if not request.app.state.bootstrap.open_url(url):
            raise HTTPException(status_code=400, detail="Unrecognized sign-in redirect")
        if isinstance(view, LoginView):
            await view.wait()
        return _redirect_home()

    @api.post("/oauth/open-url")
    async def oauth_open_url(request: Request, req: OpenUrlRequest) -> Dict[str, Any]:
        """Custom-scheme URLs forwarded by the OS (see `main.py --open-url`)."""
        handled = request.app.state.bootstrap.open_url(req.url)
        return {"ok": True, "handled": handled}

    @api.post("/sign-out")
    async def sign_out(request: Request):
        view = _state(request).gate.view
        if isinstance(view, HomeView):
            await view.press_log_out()
        return _redirect_home()

    @api.get("/api/session")
    async def session(request: Request) -> Dict[str, Any]:
        state = _state(request)
        view = state.gate.view
        user = state.auth.current_user
        return {
            "ok": True,
            "loggedIn": state.gate.user_logged_in,
            "revision": state.gate.revision,
            "view": view.title.lower(),
            "phase": view.phase.value,
            "busy": view.busy,
            "error": view.error,
            "user": (
                {
                    "uid": user.uid,
                    "email": user.email,
                    "displayName": user.display_name,
                    "photoUrl": user.photo_url,
                }
                if user is not None
                else None
            ),
        }

    @api.get("/api/session/events")
    async def session_events(request: Request):
        return StreamingResponse(
            _session_events(_state(request).gate),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-store"},
        )

    return api


def run(host: str = "127.0.0.1", port: int = 8080, bootstrap: Optional[AppBootstrap] = None) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting sign-in example on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(create_app(bootstrap), host=host, port=port, log_level=uvicorn_log_level)
