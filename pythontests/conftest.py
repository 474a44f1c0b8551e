"""
Shared fixtures: a fake Spotify HTTP transport and per-test app state.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

from moodmix import api
from moodmix.sessions import InMemorySessionStore, Session


class FakeSpotifyHTTP:
    """
    Stand-in for the shared httpx.Client. Responses are registered per
    (method, path); every call is recorded in order.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.calls: List[Tuple[str, str, dict]] = []

    def add(
        self,
        method: str,
        path: str,
        status_code: int = 200,
        json: Any = None,
        text: Optional[str] = None,
        exc: Optional[Exception] = None,
    ) -> None:
        if exc is not None:
            self.routes[(method, path)] = exc
        elif text is not None:
            self.routes[(method, path)] = httpx.Response(status_code, text=text)
        else:
            self.routes[(method, path)] = httpx.Response(status_code, json=json if json is not None else {})

    def _dispatch(self, method: str, url: str, kwargs: dict) -> httpx.Response:
        path = httpx.URL(url).path
        self.calls.append((method, path, kwargs))
        result = self.routes.get((method, path))
        if result is None:
            return httpx.Response(404, json={"error": {"status": 404, "message": "not found"}})
        if isinstance(result, Exception):
            raise result
        return result

    def post(self, url: str, **kwargs) -> httpx.Response:
        return self._dispatch("POST", url, kwargs)

    def get(self, url: str, **kwargs) -> httpx.Response:
        return self._dispatch("GET", url, kwargs)

    def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        return self._dispatch(method, url, kwargs)

    def paths(self) -> List[str]:
        return [path for _, path, _ in self.calls]

    def calls_to(self, path: str) -> List[Tuple[str, str, dict]]:
        return [call for call in self.calls if call[1] == path]

    def close(self) -> None:
        return None


@pytest.fixture(autouse=True)
def app_state(monkeypatch):
    """Fresh session store, cleared rate limits and test credentials."""
    store = InMemorySessionStore()
    monkeypatch.setattr(api, "_sessions", store, raising=True)
    monkeypatch.setattr(api._cfg.spotify, "client_id", "test-client-id")
    monkeypatch.setattr(api._cfg.spotify, "client_secret", "test-client-secret")
    monkeypatch.setattr(api._cfg.spotify, "redirect_uri", "http://localhost:3000/callback")
    api._admission.reset()
    yield store
    api._admission.reset()


@pytest.fixture
def spotify_http(monkeypatch) -> FakeSpotifyHTTP:
    fake = FakeSpotifyHTTP()
    monkeypatch.setattr(api, "_oauth_http", fake, raising=True)
    return fake


@pytest.fixture
def client() -> TestClient:
    return TestClient(api.app)


@pytest.fixture
def logged_in(app_state: InMemorySessionStore, client: TestClient) -> str:
    """Session holding a token pair; returns the session id."""
    session_id = "test-session"
    app_state.save(session_id, Session(access_token="old-access", refresh_token="refresh-1"))
    client.cookies.set(api._cfg.session.cookie_name, session_id)
    return session_id
