"""
Request pipeline stages for protected moodmix routes.

A stage takes the request and its `PipelineContext` and returns either a
terminal `Response` (stop here) or None (continue). `run_stages` applies
stages in order and stops at the first terminal response.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from fastapi import Request
from fastapi.responses import PlainTextResponse, RedirectResponse, Response

from .sessions import Session, SessionStore
from .spotify import SpotifyAuthError, SpotifyClient, SpotifyError

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    session_id: str
    store: SessionStore
    spotify: SpotifyClient

    @property
    def session(self) -> Session:
        return self.store.get(self.session_id)


Stage = Callable[[Request, PipelineContext], Optional[Response]]


def run_stages(
    request: Request, ctx: PipelineContext, stages: Sequence[Stage]
) -> Optional[Response]:
    for stage in stages:
        response = stage(request, ctx)
        if response is not None:
            logger.debug(f"Stage {stage.__name__} ended {request.url.path} with {response.status_code}")
            return response
    return None


def auth_guard(request: Request, ctx: PipelineContext) -> Optional[Response]:
    if not ctx.session.access_token:
        logger.info(f"Unauthenticated request to {request.url.path}, redirecting to landing page")
        return RedirectResponse("/", status_code=302)
    return None


def token_refresher(request: Request, ctx: PipelineContext) -> Optional[Response]:
    """
    Exchange the session's refresh token for a new access token.

    Runs on every protected request; expiry is not tracked. On success the
    session and the request's Spotify client both carry the new token. On
    failure the stored tokens are left untouched.
    """
    session = ctx.session
    if not session.access_token or not session.refresh_token:
        logger.warning("Access token or refresh token missing in session")
        return PlainTextResponse("Authentication required", status_code=401)

    try:
        grant = ctx.spotify.refresh_access_token(session.refresh_token)
    except SpotifyAuthError as exc:
        logger.error(f"Refresh token rejected: {exc}")
        return PlainTextResponse("Invalid or expired refresh token", status_code=401)
    except SpotifyError as exc:
        logger.error(f"Error refreshing access token: {exc}")
        return PlainTextResponse("Internal Server Error", status_code=500)

    ctx.store.update_access_token(ctx.session_id, grant.access_token)
    ctx.spotify.set_access_token(grant.access_token)
    logger.info("Access token refreshed successfully")
    return None


PROTECTED_STAGES: Sequence[Stage] = (auth_guard, token_refresher)


__all__ = [
    "PROTECTED_STAGES",
    "PipelineContext",
    "Stage",
    "auth_guard",
    "run_stages",
    "token_refresher",
]
