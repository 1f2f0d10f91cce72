import json
import threading

import pytest

from app.crm import auth as crm_auth
from app.crm import create_app

API_BASE = "http://crm.test/api"


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body
        self.content = b"" if body is None else json.dumps(body).encode("utf-8")

    def json(self):
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body


class FakeTransport:
    """
    Stands in for requests.Session. Routes are keyed by (METHOD, path below
    API_BASE); a route may be a FakeResponse, an exception to raise, or a
    callable(call) returning either. Unrouted calls get a 404.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []
        self._lock = threading.Lock()

    def add(self, method, path, status=200, body=None):
        self.routes[(method.upper(), path)] = FakeResponse(status, body)

    def route(self, method, path, handler):
        self.routes[(method.upper(), path)] = handler

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        path = url[len(API_BASE):] if url.startswith(API_BASE) else url
        call = {"method": method.upper(), "path": path, "params": params, "json": json, "headers": headers or {}}
        with self._lock:
            self.calls.append(call)
        handler = self.routes.get((method.upper(), path))
        if handler is None:
            return FakeResponse(404, {"message": f"No route for {method} {path}"})
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            handler = handler(call)
            if isinstance(handler, Exception):
                raise handler
        return handler

    def calls_to(self, method, path=None):
        return [c for c in self.calls if c["method"] == method.upper() and (path is None or c["path"] == path)]

    def reset_calls(self):
        with self._lock:
            self.calls.clear()


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def app(transport, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CRM_API_BASE_URL", API_BASE)
    monkeypatch.delenv("CRM_API_TIMEOUT", raising=False)
    crm_auth._login_attempts.clear()
    app = create_app(http=transport)
    app.config["TESTING"] = True
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def login(client, transport, username, password="pw", roles=None):
    """Sign in through the real login view with a scripted /users/me."""
    if roles is None:
        transport.add("GET", "/users/me", 404)
        transport.add("GET", "/customers", 200, [])
    else:
        transport.add("GET", "/users/me", 200, {"id": 1, "username": username, "roles": list(roles)})
    r = client.post("/auth/login", data={"username": username, "password": password})
    assert r.status_code == 302
    transport.reset_calls()
    return r


def csrf_token(client):
    with client.session_transaction() as s:
        token = s.get("csrf_token")
        if not token:
            token = "test-csrf-token"
            s["csrf_token"] = token
    return token
