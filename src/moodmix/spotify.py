"""
Spotify integration layer for moodmix.

Covers the user-level (authorization code) side of the Web API:
- Building the authorize URL and exchanging codes / refresh tokens.
- Artist search and recommendations for playlist generation.
- Profile lookup, playlist creation and track addition for saving.

A client is bound to one access token at a time. The HTTP connection pool
(`httpx.Client`) can be shared between clients.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence
from urllib.parse import urlencode

import httpx

from .config import SpotifyConfig

logger = logging.getLogger(__name__)


SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1"

# Spotify accepts at most 100 URIs per "add items to playlist" call.
MAX_TRACKS_PER_REQUEST = 100


class SpotifyError(Exception):
    """Base exception for Spotify-related issues.

    ``status_code``/``body`` are set when Spotify answered with a structured
    error response; both stay ``None`` for transport failures.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.content_type = content_type

    @property
    def has_response(self) -> bool:
        return self.status_code is not None


class SpotifyAuthError(SpotifyError):
    """A credential (code or refresh token) was rejected by Spotify."""


class SpotifyAPIError(SpotifyError):
    """Non-auth API errors (network, rate limit, bad responses)."""


class SpotifyConfigError(SpotifyError):
    """Client ID/secret are not configured."""


@dataclass
class TokenGrant:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600
    scope: Optional[str] = None
    token_type: Optional[str] = None


def _error_from_response(cls, message: str, resp: httpx.Response) -> SpotifyError:
    return cls(
        f"{message}: {resp.status_code} {resp.text}",
        status_code=resp.status_code,
        body=resp.text,
        content_type=resp.headers.get("content-type"),
    )


def _is_rejected_grant(resp: httpx.Response) -> bool:
    if resp.status_code == 401:
        return True
    if resp.status_code != 400:
        return False
    try:
        payload = resp.json()
    except ValueError:
        return False
    return isinstance(payload, dict) and payload.get("error") == "invalid_grant"


class SpotifyClient:
    """
    Spotify Web API client acting on behalf of one user.

    The active credential is set with `set_access_token`; the token
    exchange methods do not require one.
    """

    def __init__(
        self,
        cfg: SpotifyConfig,
        *,
        http: Optional[httpx.Client] = None,
        access_token: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self._cfg = cfg
        self._owns_http = http is None
        self._http = http if http is not None else httpx.Client(timeout=timeout)
        self._access_token = access_token

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    def set_access_token(self, access_token: str) -> None:
        self._access_token = access_token

    # --------------------------------------------------------------------- #
    # Authorization code flow
    # --------------------------------------------------------------------- #
    def authorize_url(self, scopes: Sequence[str], *, state: Optional[str] = None) -> str:
        if not self._cfg.client_id:
            logger.error("Cannot build authorize URL: client ID missing")
            raise SpotifyConfigError(
                "MOODMIX_SPOTIFY_CLIENT_ID is not set. Cannot start OAuth login."
            )
        params = {
            "client_id": self._cfg.client_id,
            "response_type": "code",
            "redirect_uri": self._cfg.redirect_uri,
            "scope": " ".join(scopes),
        }
        if state:
            params["state"] = state
        return f"{SPOTIFY_AUTHORIZE_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> TokenGrant:
        logger.info("Exchanging authorization code for tokens")
        data = self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._cfg.redirect_uri,
            }
        )
        return self._grant_from(data)

    def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        logger.info("Refreshing Spotify access token")
        data = self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }
        )
        return self._grant_from(data)

    def _token_request(self, form: dict) -> dict:
        if not self._cfg.client_id or not self._cfg.client_secret:
            logger.error("Spotify credentials missing: client_id or client_secret not set")
            raise SpotifyConfigError(
                "Spotify client ID/secret are missing. "
                "Set MOODMIX_SPOTIFY_CLIENT_ID and MOODMIX_SPOTIFY_CLIENT_SECRET."
            )

        try:
            resp = self._http.post(
                SPOTIFY_TOKEN_URL,
                data=form,
                auth=(self._cfg.client_id, self._cfg.client_secret),
            )
        except httpx.HTTPError as exc:
            logger.error(f"Failed to contact Spotify token endpoint: {exc}")
            raise SpotifyAPIError(f"Failed to contact Spotify token endpoint: {exc}") from exc

        if resp.status_code != 200:
            logger.error(f"Spotify token request failed: {resp.status_code} {resp.text}")
            if _is_rejected_grant(resp):
                raise _error_from_response(SpotifyAuthError, "Spotify rejected the grant", resp)
            raise _error_from_response(SpotifyAPIError, "Spotify token request failed", resp)

        return resp.json()

    @staticmethod
    def _grant_from(data: dict) -> TokenGrant:
        access_token = data.get("access_token")
        if not access_token:
            logger.error("Spotify token response missing access_token")
            raise SpotifyAPIError("Spotify token response missing access_token.")
        return TokenGrant(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_in=int(data.get("expires_in", 3600)),
            scope=data.get("scope"),
            token_type=data.get("token_type"),
        )

    # --------------------------------------------------------------------- #
    # Low-level request helper
    # --------------------------------------------------------------------- #
    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self._access_token:
            raise SpotifyAuthError("No access token set on Spotify client.")

        url = f"{SPOTIFY_API_BASE_URL}{path}"
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {self._access_token}"

        logger.debug(f"Spotify API request: {method} {path}")
        try:
            resp = self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.error(f"HTTP error calling Spotify API {path}: {exc}")
            raise SpotifyAPIError(f"Error calling Spotify API: {exc}") from exc

        if not resp.is_success:
            logger.error(f"Spotify API error {resp.status_code} on {path}: {resp.text}")
            raise _error_from_response(SpotifyAPIError, f"Spotify API error on {path}", resp)

        logger.debug(f"Spotify API request successful: {method} {path} -> {resp.status_code}")
        if not resp.content:
            return {}
        return resp.json()

    # --------------------------------------------------------------------- #
    # Catalog
    # --------------------------------------------------------------------- #
    def search_artists(self, name: str, *, limit: int = 20) -> List[dict]:
        """
        Search for artists by name, in Spotify's ranking order.
        """
        logger.info(f"Searching Spotify artists: name={name!r}, limit={limit}")
        params = {
            "q": name,
            "type": "artist",
            "limit": max(1, min(limit, 50)),
        }
        data = self._request("GET", "/search", params=params)
        items = data.get("artists", {}).get("items", []) or []
        logger.debug(f"Spotify artist search returned {len(items)} artists")
        return items

    def get_recommendations(
        self,
        *,
        seed_artists: Sequence[str] = (),
        seed_genres: Sequence[str] = (),
        limit: int = 20,
    ) -> List[dict]:
        params = {"limit": max(1, min(limit, 100))}
        if seed_artists:
            params["seed_artists"] = ",".join(seed_artists)
        if seed_genres:
            params["seed_genres"] = ",".join(seed_genres)
        logger.info(f"Fetching Spotify recommendations: {params}")
        data = self._request("GET", "/recommendations", params=params)
        return data.get("tracks", []) or []

    # --------------------------------------------------------------------- #
    # User library
    # --------------------------------------------------------------------- #
    def get_me(self) -> dict:
        return self._request("GET", "/me")

    def create_playlist(
        self,
        user_id: str,
        name: str,
        *,
        public: bool = False,
        description: Optional[str] = None,
    ) -> dict:
        payload = {"name": name, "public": public}
        if description:
            payload["description"] = description
        logger.info(f"Creating playlist for {user_id}: name={name!r}, public={public}")
        return self._request("POST", f"/users/{user_id}/playlists", json=payload)

    def add_tracks_to_playlist(self, playlist_id: str, uris: Sequence[str]) -> Optional[str]:
        """
        Append tracks to a playlist in order, returning the last snapshot id.
        """
        snapshot_id: Optional[str] = None
        for i in range(0, len(uris), MAX_TRACKS_PER_REQUEST):
            chunk = list(uris[i : i + MAX_TRACKS_PER_REQUEST])
            data = self._request("POST", f"/playlists/{playlist_id}/tracks", json={"uris": chunk})
            snapshot_id = data.get("snapshot_id", snapshot_id)
        logger.info(f"Added {len(uris)} tracks to playlist {playlist_id}")
        return snapshot_id

    def close(self) -> None:
        if self._owns_http:
            logger.debug("Closing SpotifyClient HTTP connection")
            self._http.close()


__all__ = [
    "MAX_TRACKS_PER_REQUEST",
    "SpotifyAPIError",
    "SpotifyAuthError",
    "SpotifyClient",
    "SpotifyConfigError",
    "SpotifyError",
    "TokenGrant",
]
