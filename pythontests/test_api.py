from __future__ import annotations

import json

import httpx

from moodmix import api
from moodmix.sessions import InMemorySessionStore, Session


def _recommended_track(idx: int, duration_ms: int = 185000) -> dict:
    return {
        "name": f"Song {idx}",
        "album": {"name": f"Album {idx}"},
        "artists": [{"name": "Band"}, {"name": f"Guest {idx}"}],
        "duration_ms": duration_ms,
        "uri": f"spotify:track:{idx}",
        "external_urls": {"spotify": f"https://open.spotify.com/track/{idx}"},
    }


def _refresh_ok(spotify_http, token: str = "new-access") -> None:
    spotify_http.add("POST", "/api/token", json={"access_token": token, "expires_in": 3600})


def test_health_endpoint(client) -> None:
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_index_logged_out_sets_session_cookie(client, app_state) -> None:
    resp = client.get("/")

    assert resp.status_code == 200
    assert "Log in with Spotify" in resp.text
    session_id = resp.cookies.get(api._cfg.session.cookie_name)
    assert session_id
    # Anonymous visitors get a cookie but nothing is stored for them.
    assert app_state.load(session_id) is None
    assert len(app_state) == 0


def test_cookieless_requests_do_not_grow_session_store(client, app_state) -> None:
    for _ in range(50):
        client.cookies.clear()
        assert client.get("/health").status_code == 200
        assert client.get("/").status_code == 200

    assert len(app_state) == 0


def test_session_middleware_does_not_touch_store(client, monkeypatch) -> None:
    class _ExplodingStore(InMemorySessionStore):
        def load(self, session_id):
            raise AssertionError("store read on an unauthenticated route")

        def save(self, session_id, session):
            raise AssertionError("store write on an unauthenticated route")

    monkeypatch.setattr(api, "_sessions", _ExplodingStore())
    client.cookies.set(api._cfg.session.cookie_name, "known-cookie")

    resp = client.get("/health")

    assert resp.status_code == 200
    # An existing cookie is kept as is.
    assert api._cfg.session.cookie_name not in resp.cookies


def test_index_logged_in(client, logged_in) -> None:
    resp = client.get("/")

    assert resp.status_code == 200
    assert "Generate playlist" in resp.text
    assert "Log in with Spotify" not in resp.text


def test_login_redirects_to_spotify(client) -> None:
    resp = client.get("/login", follow_redirects=False)

    assert resp.status_code == 302
    location = resp.headers["location"]
    assert location.startswith("https://accounts.spotify.com/authorize?")
    assert "client_id=test-client-id" in location
    assert "response_type=code" in location
    assert "playlist-modify-public" in location
    assert "playlist-modify-private" in location


def test_login_requires_client_id(client, monkeypatch) -> None:
    monkeypatch.setattr(api._cfg.spotify, "client_id", "")

    resp = client.get("/login")

    assert resp.status_code == 500
    assert "MOODMIX_SPOTIFY_CLIENT_ID" in resp.json()["detail"]


def test_callback_stores_tokens_and_redirects(client, app_state, spotify_http) -> None:
    spotify_http.add(
        "POST",
        "/api/token",
        json={"access_token": "granted-access", "refresh_token": "granted-refresh", "expires_in": 3600},
    )

    resp = client.get("/callback?code=auth-code", follow_redirects=False)

    assert resp.status_code == 302
    assert resp.headers["location"] == "/"
    session_id = resp.cookies.get(api._cfg.session.cookie_name)
    session = app_state.load(session_id)
    assert session.access_token == "granted-access"
    assert session.refresh_token == "granted-refresh"

    _, _, kwargs = spotify_http.calls_to("/api/token")[0]
    assert kwargs["data"]["grant_type"] == "authorization_code"
    assert kwargs["data"]["code"] == "auth-code"


def test_callback_issues_fresh_session_id(client, app_state, spotify_http) -> None:
    spotify_http.add("POST", "/api/token", json={"access_token": "granted-access", "refresh_token": "r"})
    app_state.save("pre-login-id", Session())
    client.cookies.set(api._cfg.session.cookie_name, "pre-login-id")

    resp = client.get("/callback?code=auth-code", follow_redirects=False)

    new_id = resp.cookies.get(api._cfg.session.cookie_name)
    assert new_id and new_id != "pre-login-id"
    assert "pre-login-id" not in app_state
    assert app_state.load(new_id).logged_in
    assert len(app_state) == 1


def test_callback_exchange_failure(client, spotify_http) -> None:
    spotify_http.add("POST", "/api/token", status_code=400, json={"error": "invalid_grant"})

    resp = client.get("/callback?code=bad-code", follow_redirects=False)

    assert resp.status_code == 500
    assert resp.text == "Authorization Error"


def test_callback_user_denied(client, spotify_http) -> None:
    resp = client.get("/callback?error=access_denied", follow_redirects=False)

    assert resp.status_code == 400
    assert spotify_http.calls == []


def test_logout_clears_tokens(client, logged_in, app_state) -> None:
    resp = client.post("/logout", follow_redirects=False)

    assert resp.status_code == 302
    assert not app_state.get(logged_in).logged_in
    assert logged_in not in app_state


def test_protected_routes_redirect_without_token(client, spotify_http) -> None:
    for path, body in (
        ("/generate-playlist", {"artistName": "Band", "mood": "chill"}),
        ("/save-playlist", {"playlistName": "x", "trackUris": "[]"}),
    ):
        resp = client.post(path, json=body, follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"

    assert spotify_http.calls == []


def test_protected_route_without_refresh_token(client, app_state, spotify_http) -> None:
    app_state.set_tokens("half-session", "access-only", None)
    client.cookies.set(api._cfg.session.cookie_name, "half-session")

    resp = client.post("/save-playlist", json={"playlistName": "x", "trackUris": "[]"})

    assert resp.status_code == 401
    assert resp.text == "Authentication required"
    assert spotify_http.calls_to("/api/token") == []


def test_generate_playlist_refreshes_then_returns_tracks(client, logged_in, app_state, spotify_http) -> None:
    _refresh_ok(spotify_http, "fresh-token")
    spotify_http.add(
        "GET",
        "/v1/search",
        json={"artists": {"items": [{"id": "artist-1", "name": "Band"}, {"id": "artist-2"}]}},
    )
    spotify_http.add(
        "GET",
        "/v1/recommendations",
        json={"tracks": [_recommended_track(1), _recommended_track(2, duration_ms=59999)]},
    )

    resp = client.post(
        "/generate-playlist",
        json={"artistName": "Band", "mood": "chill"},
        headers={"Accept": "application/json"},
    )

    assert resp.status_code == 200
    tracks = resp.json()["tracks"]
    assert [t["name"] for t in tracks] == ["Song 1", "Song 2"]
    assert tracks[0] == {
        "name": "Song 1",
        "album": "Album 1",
        "artists": "Band, Guest 1",
        "duration": "3:05",
        "uri": "spotify:track:1",
        "external_url": "https://open.spotify.com/track/1",
    }
    assert tracks[1]["duration"] == "1:00"

    assert app_state.load(logged_in).access_token == "fresh-token"
    assert app_state.load(logged_in).refresh_token == "refresh-1"

    assert spotify_http.paths() == ["/api/token", "/v1/search", "/v1/recommendations"]
    _, _, search_kwargs = spotify_http.calls_to("/v1/search")[0]
    assert search_kwargs["headers"]["Authorization"] == "Bearer fresh-token"
    _, _, rec_kwargs = spotify_http.calls_to("/v1/recommendations")[0]
    assert rec_kwargs["params"]["seed_artists"] == "artist-1"
    assert rec_kwargs["params"]["seed_genres"] == "chill"
    assert rec_kwargs["params"]["limit"] == 12


def test_generate_playlist_renders_html(client, logged_in, spotify_http) -> None:
    _refresh_ok(spotify_http)
    spotify_http.add("GET", "/v1/search", json={"artists": {"items": [{"id": "artist-1"}]}})
    spotify_http.add("GET", "/v1/recommendations", json={"tracks": [_recommended_track(7)]})

    resp = client.post("/generate-playlist", data={"artistName": "Band", "mood": "chill"})

    assert resp.status_code == 200
    assert "Song 7" in resp.text
    assert "3:05" in resp.text
    assert "spotify:track:7" in resp.text


def test_generate_playlist_artist_not_found(client, logged_in, spotify_http) -> None:
    _refresh_ok(spotify_http)
    spotify_http.add("GET", "/v1/search", json={"artists": {"items": []}})

    resp = client.post("/generate-playlist", json={"artistName": "Nobody", "mood": "chill"})

    assert resp.status_code == 404
    assert resp.text == "Artist not found"
    assert spotify_http.calls_to("/v1/recommendations") == []


def test_generate_playlist_upstream_failure(client, logged_in, spotify_http) -> None:
    _refresh_ok(spotify_http)
    spotify_http.add("GET", "/v1/search", json={"artists": {"items": [{"id": "artist-1"}]}})
    spotify_http.add("GET", "/v1/recommendations", status_code=503, json={"error": "unavailable"})

    resp = client.post("/generate-playlist", json={"artistName": "Band", "mood": "chill"})

    assert resp.status_code == 500
    assert resp.text == "Internal Server Error"


def test_generate_playlist_invalid_refresh_token(client, logged_in, app_state, spotify_http) -> None:
    spotify_http.add("POST", "/api/token", status_code=400, json={"error": "invalid_grant"})

    resp = client.post("/generate-playlist", json={"artistName": "Band", "mood": "chill"})

    assert resp.status_code == 401
    assert resp.text == "Invalid or expired refresh token"
    session = app_state.load(logged_in)
    assert session.access_token == "old-access"
    assert session.refresh_token == "refresh-1"
    assert spotify_http.calls_to("/v1/search") == []


def test_generate_playlist_refresh_network_error(client, logged_in, spotify_http) -> None:
    spotify_http.add("POST", "/api/token", exc=httpx.ConnectError("connection refused"))

    resp = client.post("/generate-playlist", json={"artistName": "Band", "mood": "chill"})

    assert resp.status_code == 500


def test_generate_playlist_missing_fields(client, logged_in, spotify_http) -> None:
    _refresh_ok(spotify_http)

    resp = client.post("/generate-playlist", json={"artistName": "Band"})

    assert resp.status_code == 422
    assert resp.text == "Invalid request body: mood"
    assert spotify_http.calls_to("/v1/search") == []


def test_generate_playlist_json_content_type_is_case_insensitive(client, logged_in, spotify_http) -> None:
    _refresh_ok(spotify_http)

    resp = client.post(
        "/generate-playlist",
        content=json.dumps({"artistName": "Band"}),
        headers={"Content-Type": "Application/JSON"},
    )

    # Parsed as JSON, so only the missing field is reported.
    assert resp.status_code == 422
    assert resp.text == "Invalid request body: mood"


def test_save_playlist_body_not_json(client, logged_in, spotify_http) -> None:
    _refresh_ok(spotify_http)

    resp = client.post(
        "/save-playlist",
        content="{broken",
        headers={"Content-Type": "application/json"},
    )

    assert resp.status_code == 422
    assert spotify_http.calls_to("/v1/me") == []


def test_save_playlist_happy_path(client, logged_in, spotify_http) -> None:
    _refresh_ok(spotify_http)
    spotify_http.add("GET", "/v1/me", json={"id": "user-1"})
    spotify_http.add(
        "POST",
        "/v1/users/user-1/playlists",
        status_code=201,
        json={"id": "pl-1", "external_urls": {"spotify": "https://open.spotify.com/playlist/pl-1"}},
    )
    spotify_http.add("POST", "/v1/playlists/pl-1/tracks", status_code=201, json={"snapshot_id": "snap"})

    resp = client.post(
        "/save-playlist",
        json={
            "playlistName": "Road Trip",
            "trackUris": json.dumps(["spotify:track:abc", "spotify:track:def"]),
        },
    )

    assert resp.status_code == 200
    assert "Road Trip" in resp.text
    assert spotify_http.paths() == [
        "/api/token",
        "/v1/me",
        "/v1/users/user-1/playlists",
        "/v1/playlists/pl-1/tracks",
    ]
    _, _, create_kwargs = spotify_http.calls_to("/v1/users/user-1/playlists")[0]
    assert create_kwargs["json"] == {"name": "Road Trip", "public": False}
    _, _, add_kwargs = spotify_http.calls_to("/v1/playlists/pl-1/tracks")[0]
    assert add_kwargs["json"] == {"uris": ["spotify:track:abc", "spotify:track:def"]}


def test_save_playlist_accepts_form_body(client, logged_in, spotify_http) -> None:
    _refresh_ok(spotify_http)
    spotify_http.add("GET", "/v1/me", json={"id": "user-1"})
    spotify_http.add("POST", "/v1/users/user-1/playlists", status_code=201, json={"id": "pl-1"})
    spotify_http.add("POST", "/v1/playlists/pl-1/tracks", status_code=201, json={"snapshot_id": "snap"})

    resp = client.post(
        "/save-playlist",
        data={"playlistName": "Form List", "trackUris": '["spotify:track:abc"]'},
    )

    assert resp.status_code == 200
    assert resp.text == "Playlist 'Form List' created successfully!"


def test_save_playlist_malformed_track_uris(client, logged_in, spotify_http) -> None:
    _refresh_ok(spotify_http)
    spotify_http.add("GET", "/v1/me", json={"id": "user-1"})
    spotify_http.add("POST", "/v1/users/user-1/playlists", status_code=201, json={"id": "pl-1"})

    resp = client.post("/save-playlist", json={"playlistName": "Road Trip", "trackUris": "not json"})

    assert resp.status_code == 400
    assert "trackUris" in resp.text
    assert spotify_http.calls_to("/v1/playlists/pl-1/tracks") == []


def test_save_playlist_relays_structured_upstream_error(client, logged_in, spotify_http) -> None:
    _refresh_ok(spotify_http)
    spotify_http.add("GET", "/v1/me", json={"id": "user-1"})
    spotify_http.add(
        "POST",
        "/v1/users/user-1/playlists",
        status_code=403,
        json={"error": {"status": 403, "message": "Insufficient client scope"}},
    )

    resp = client.post("/save-playlist", json={"playlistName": "Road Trip", "trackUris": "[]"})

    assert resp.status_code == 403
    assert resp.json() == {"error": {"status": 403, "message": "Insufficient client scope"}}
    assert spotify_http.calls_to("/v1/users/user-1/playlists")
    assert not [p for p in spotify_http.paths() if p.endswith("/tracks")]


def test_save_playlist_network_failure(client, logged_in, spotify_http) -> None:
    _refresh_ok(spotify_http)
    spotify_http.add("GET", "/v1/me", exc=httpx.ConnectError("connection reset"))

    resp = client.post("/save-playlist", json={"playlistName": "Road Trip", "trackUris": "[]"})

    assert resp.status_code == 500
    assert resp.text == "Internal Server Error"
