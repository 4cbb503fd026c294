from __future__ import annotations

import dataclasses
import time

import pytest
from fastapi.testclient import TestClient

from signin.api.server import _session_events, create_app
from signin.app.bootstrap import AppBootstrap
from signin.app.controller import AuthController
from signin.app.gate import SessionGate
from signin.auth.config import ProviderOptions
from signin.auth.errors import ConfigurationError
from signin.auth.models import AuthUser


@pytest.fixture
def client(auth_config, fake_auth, fake_identity):
    app = create_app(AppBootstrap(auth_config, auth=fake_auth, identity=fake_identity))
    with TestClient(app) as c:
        yield c


def _session(c: TestClient) -> dict:
    r = c.get("/api/session")
    assert r.status_code == 200
    return r.json()


def _wait_for(c: TestClient, predicate) -> dict:
    body = _session(c)
    for _ in range(100):
        if predicate(body):
            return body
        time.sleep(0.01)
        body = _session(c)
    return body


def test_healthz(client) -> None:
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_index_shows_login_without_session(client) -> None:
    r = client.get("/")
    assert r.status_code == 200
    assert "<h1>Login</h1>" in r.text
    assert "Sign in with Google" in r.text
    assert r.headers["cache-control"] == "no-store"


def test_session_endpoint_without_user(client) -> None:
    body = _session(client)
    assert body["ok"] is True
    assert body["loggedIn"] is False
    assert body["view"] == "login"
    assert body["phase"] == "idle"
    assert body["busy"] is False
    assert body["error"] == ""
    assert body["user"] is None


def test_sign_in_and_log_out_flow(client, fake_identity, fake_auth) -> None:
    r = client.post("/sign-in", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"].startswith(fake_identity.consent_url)
    assert "client_id=123-abc.apps.googleusercontent.com" in r.headers["location"]
    assert _session(client)["busy"] is True

    r = client.get("/oauth/callback?code=4%2Fabc&state=s", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/"

    page = client.get("/").text
    assert "Hello Ada Lovelace" in page
    assert "Log Out" in page

    body = _session(client)
    assert body["loggedIn"] is True
    assert body["view"] == "home"
    assert body["user"] == {
        "uid": "uid-1",
        "email": "ada@example.com",
        "displayName": "Ada Lovelace",
        "photoUrl": None,
    }
    [credential] = fake_auth.credentials
    assert credential.id_token == "eyJ.id.token"

    r = client.post("/sign-out", follow_redirects=False)
    assert r.status_code == 303
    body = _session(client)
    assert body["loggedIn"] is False
    assert body["view"] == "login"
    assert body["error"] == ""
    assert fake_identity.sign_out_calls == 1


def test_greeting_falls_back_when_name_missing(client, fake_auth) -> None:
    fake_auth.display_name = None
    client.post("/sign-in", follow_redirects=False)
    client.get("/oauth/callback?code=abc", follow_redirects=False)
    assert "Hello Username not found" in client.get("/").text


def test_cancelled_consent_shows_message_on_login(client, fake_auth) -> None:
    client.post("/sign-in", follow_redirects=False)
    r = client.get("/oauth/callback?error=access_denied", follow_redirects=False)
    assert r.status_code == 303

    page = client.get("/").text
    assert "<h1>Login</h1>" in page
    assert "The user canceled the sign-in flow." in page
    body = _session(client)
    assert body["phase"] == "failed"
    assert body["loggedIn"] is False
    assert fake_auth.credentials == []


def test_sign_in_when_already_home_just_redirects(client, fake_identity) -> None:
    client.post("/sign-in", follow_redirects=False)
    client.get("/oauth/callback?code=abc", follow_redirects=False)

    r = client.post("/sign-in", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/"
    assert len(fake_identity.presented) == 1


def test_sign_out_on_login_is_noop(client, fake_auth) -> None:
    r = client.post("/sign-out", follow_redirects=False)
    assert r.status_code == 303
    assert fake_auth.sign_out_calls == 0


def test_unrecognized_callback(client) -> None:
    r = client.get("/oauth/callback?code=abc", follow_redirects=False)
    assert r.status_code == 400


def test_open_url_completes_pending_sign_in(client) -> None:
    r = client.post("/oauth/open-url", json={"url": "com.googleusercontent.apps.123-abc:/oauthredirect?code=x"})
    assert r.json() == {"ok": True, "handled": False}

    client.post("/sign-in", follow_redirects=False)
    r = client.post("/oauth/open-url", json={"url": "com.googleusercontent.apps.123-abc:/oauthredirect?code=x"})
    assert r.json() == {"ok": True, "handled": True}
    assert _wait_for(client, lambda b: b["loggedIn"])["view"] == "home"


def test_missing_client_id_is_a_server_error(auth_config, fake_auth, fake_identity) -> None:
    fake_auth.options = ProviderOptions(api_key="test-api-key")
    app = create_app(AppBootstrap(auth_config, auth=fake_auth, identity=fake_identity))
    with TestClient(app) as c:
        r = c.post("/sign-in", follow_redirects=False)
    assert r.status_code == 500
    assert "No client ID" in r.json()["detail"]
    assert fake_identity.presented == []


def test_startup_fails_without_provider_bundle(tmp_path, auth_config) -> None:
    cfg = dataclasses.replace(auth_config, provider_config_path=str(tmp_path / "missing.plist"))
    app = create_app(AppBootstrap(cfg))
    with pytest.raises(ConfigurationError):
        with TestClient(app):
            pass


@pytest.mark.asyncio
async def test_session_events_stream(fake_auth, fake_identity) -> None:
    gate = SessionGate(fake_auth, AuthController(fake_auth, fake_identity))
    gate.mount()
    events = _session_events(gate)

    first = await events.__anext__()
    assert first == 'event: session\ndata: {"loggedIn": false, "revision": 1}\n\n'

    fake_auth.set_user(AuthUser(uid="uid-1"))
    second = await events.__anext__()
    assert second.startswith("event: session\n")
    assert '"loggedIn": true' in second

    await events.aclose()


def test_unexpected_backend_failure_stays_on_login(client, fake_auth) -> None:
    fake_auth.sign_in_error = ValueError("could not convert string to float: 'soon'")
    client.post("/sign-in", follow_redirects=False)
    r = client.get("/oauth/callback?code=abc", follow_redirects=False)
    assert r.status_code == 303

    body = _session(client)
    assert body["view"] == "login"
    assert body["phase"] == "failed"
    assert body["error"] == "could not convert string to float: 'soon'"
