"""
FastAPI web app for moodmix.

Routes:

- GET  /                   landing page (login state from the session)
- GET  /login              redirect to Spotify's authorize page
- GET  /callback?code=...  exchange the code, store tokens, back to /
- POST /generate-playlist  {artistName, mood} -> rendered track list
- POST /save-playlist      {playlistName, trackUris} -> private playlist
- POST /logout             forget the session's tokens
- GET  /health

Every request first passes the admission gate. The two POST workflows then
run the auth guard and the token refresher before touching Spotify.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Optional, Type, TypeVar

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import (
    HTMLResponse,
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
)
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .admission import AdmissionOracle, LocalAdmissionOracle, admission_gate
from .config import load_config
from .middleware import PROTECTED_STAGES, PipelineContext, run_stages
from .pipeline import (
    ArtistNotFoundError,
    MalformedInputError,
    generate_playlist,
    save_playlist,
)
from .sessions import SessionStore, build_session_store, new_session_id
from .spotify import SpotifyClient, SpotifyConfigError, SpotifyError

logger = logging.getLogger(__name__)

SCOPES = ["playlist-modify-public", "playlist-modify-private"]

_cfg = load_config()
_oauth_http = httpx.Client(timeout=10.0)
_sessions: SessionStore = build_session_store(_cfg.session)
_admission: AdmissionOracle = LocalAdmissionOracle.from_config(_cfg.admission)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

app = FastAPI(
    title="moodmix",
    description="Generate and save Spotify playlists from an artist and a mood.",
    version="0.1.0",
)


class GeneratePlaylistRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    artist_name: str = Field(alias="artistName", min_length=1)
    mood: str = Field(min_length=1)


class SavePlaylistRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    playlist_name: str = Field(alias="playlistName", min_length=1)
    track_uris: str = Field(alias="trackUris")


ModelT = TypeVar("ModelT", bound=BaseModel)


class InvalidBodyError(ValueError):
    """Request body is unparseable or does not match its model."""


# Registered first so it runs inside the admission gate.
@app.middleware("http")
async def session_middleware(request: Request, call_next):
    cookie_name = _cfg.session.cookie_name
    cookie_id = request.cookies.get(cookie_name)
    # Nothing is stored for this id until /callback saves a token pair.
    request.state.session_id = cookie_id or new_session_id()

    response = await call_next(request)
    if request.state.session_id != cookie_id:
        response.set_cookie(
            key=cookie_name,
            value=request.state.session_id,
            httponly=True,
            samesite="lax",
            secure=False,
            max_age=_cfg.session.max_age,
        )
    return response


@app.middleware("http")
async def admission_middleware(request: Request, call_next):
    rejection = await run_in_threadpool(admission_gate, _admission, request)
    if rejection is not None:
        return rejection
    return await call_next(request)


def _spotify_client() -> SpotifyClient:
    return SpotifyClient(_cfg.spotify, http=_oauth_http)


def _pipeline_context(request: Request) -> PipelineContext:
    return PipelineContext(
        session_id=request.state.session_id,
        store=_sessions,
        spotify=_spotify_client(),
    )


async def _read_body(request: Request, model: Type[ModelT]) -> ModelT:
    """Parse a JSON or form body into `model`, or raise InvalidBodyError."""
    content_type = request.headers.get("content-type", "").lower()
    try:
        if content_type.startswith("application/json"):
            payload = await request.json()
        else:
            payload = dict(await request.form())
    except ValueError as exc:
        raise InvalidBodyError("Request body is not valid JSON") from exc

    if not isinstance(payload, dict):
        raise InvalidBodyError("Request body must be an object")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        fields = ", ".join(str(err["loc"][-1]) for err in exc.errors() if err.get("loc"))
        raise InvalidBodyError(f"Invalid request body: {fields}") from exc


def _wants_json(request: Request) -> bool:
    return "application/json" in request.headers.get("accept", "").lower()


@app.get("/health", tags=["system"])
def health() -> dict:
    logger.debug("Health check endpoint called")
    return {"status": "ok"}


@app.get("/", response_class=HTMLResponse, tags=["pages"])
def index(request: Request) -> HTMLResponse:
    session = _sessions.get(request.state.session_id)
    return templates.TemplateResponse(request, "index.html", {"logged_in": session.logged_in})


@app.get("/login", tags=["auth"])
def login() -> RedirectResponse:
    """
    Redirect the user to Spotify's authorize page to connect their account.
    """
    logger.info("OAuth login initiated")
    try:
        url = _spotify_client().authorize_url(SCOPES)
    except SpotifyConfigError as exc:
        logger.error(f"OAuth login failed: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return RedirectResponse(url, status_code=302)


@app.get("/callback", tags=["auth"])
def callback(
    request: Request,
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
) -> Response:
    """
    Spotify redirects here after the user approves or denies access.
    """
    if error:
        logger.warning(f"OAuth callback: user denied access - {error}")
        return PlainTextResponse("Authorization denied", status_code=400)
    if not code:
        logger.warning("OAuth callback: no authorization code received")
        return PlainTextResponse("Missing authorization code", status_code=400)

    try:
        grant = _spotify_client().exchange_code(code)
    except SpotifyError as exc:
        logger.error(f"Error during authorization: {exc}")
        return PlainTextResponse("Authorization Error", status_code=500)

    # Fresh id on login; the pre-login id is never promoted to a token holder.
    _sessions.delete(request.state.session_id)
    session_id = new_session_id()
    _sessions.set_tokens(session_id, grant.access_token, grant.refresh_token)
    request.state.session_id = session_id
    logger.info("OAuth callback successful, tokens stored in session")
    return RedirectResponse("/", status_code=302)


@app.post("/logout", tags=["auth"])
def logout(request: Request) -> RedirectResponse:
    _sessions.clear_tokens(request.state.session_id)
    logger.info("Session tokens cleared")
    return RedirectResponse("/", status_code=302)


@app.post("/generate-playlist", tags=["playlists"])
async def generate_playlist_route(request: Request) -> Response:
    ctx = _pipeline_context(request)
    try:
        halted = await run_in_threadpool(run_stages, request, ctx, PROTECTED_STAGES)
        if halted is not None:
            return halted
        body = await _read_body(request, GeneratePlaylistRequest)
        tracks = await run_in_threadpool(generate_playlist, ctx.spotify, body.artist_name, body.mood)
    except InvalidBodyError as exc:
        return PlainTextResponse(str(exc), status_code=422)
    except ArtistNotFoundError:
        return PlainTextResponse("Artist not found", status_code=404)
    except SpotifyError as exc:
        logger.error(f"Error generating playlist: {exc}")
        return PlainTextResponse("Internal Server Error", status_code=500)
    except Exception as exc:  # pragma: no cover - safety net
        logger.exception(f"Internal error generating playlist: {exc}")
        return PlainTextResponse("Internal Server Error", status_code=500)

    if _wants_json(request):
        return JSONResponse({"tracks": [asdict(t) for t in tracks]})
    return templates.TemplateResponse(request, "playlist.html", {"tracks": tracks})


@app.post("/save-playlist", tags=["playlists"])
async def save_playlist_route(request: Request) -> Response:
    ctx = _pipeline_context(request)
    try:
        halted = await run_in_threadpool(run_stages, request, ctx, PROTECTED_STAGES)
        if halted is not None:
            return halted
        body = await _read_body(request, SavePlaylistRequest)
        saved = await run_in_threadpool(save_playlist, ctx.spotify, body.playlist_name, body.track_uris)
    except InvalidBodyError as exc:
        return PlainTextResponse(str(exc), status_code=422)
    except MalformedInputError as exc:
        return PlainTextResponse(str(exc), status_code=400)
    except SpotifyError as exc:
        logger.error(f"Error creating playlist: {exc}")
        if exc.has_response:
            logger.error(f"Spotify API response: {exc.status_code} {exc.body}")
            return Response(
                content=exc.body or "",
                status_code=exc.status_code,
                media_type=exc.content_type,
            )
        return PlainTextResponse("Internal Server Error", status_code=500)
    except Exception as exc:  # pragma: no cover - safety net
        logger.exception(f"Internal error creating playlist: {exc}")
        return PlainTextResponse("Internal Server Error", status_code=500)

    logger.info(f"Playlist saved: {saved.playlist_id} ({saved.url})")
    return PlainTextResponse(f"Playlist '{saved.name}' created successfully!", status_code=200)
