"""
Playlist workflows for moodmix.

generate_playlist:
1) Look up the artist by name (first search hit wins).
2) Fetch recommendations seeded by that artist and the mood as a genre.
3) Format each track for display.

save_playlist:
1) Resolve the current user.
2) Create a private playlist.
3) Decode the track URIs and add them in order.

Both expect a `SpotifyClient` that already carries a fresh access token.
Failures are raised, never retried; a failed save leaves any playlist that
was already created in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from .spotify import SpotifyClient

logger = logging.getLogger(__name__)

RECOMMENDATION_LIMIT = 12

_track_uris_adapter = TypeAdapter(List[str])


class PlaylistError(Exception):
    """Base exception for workflow outcomes that are not Spotify failures."""


class ArtistNotFoundError(PlaylistError):
    def __init__(self, artist_name: str) -> None:
        super().__init__(f"Artist not found: {artist_name!r}")
        self.artist_name = artist_name


class MalformedInputError(PlaylistError):
    """Client-supplied payload could not be decoded."""


@dataclass
class PlaylistTrack:
    name: str
    album: str
    artists: str
    duration: str
    uri: str
    external_url: Optional[str] = None


@dataclass
class SavedPlaylist:
    playlist_id: str
    name: str
    url: Optional[str] = None
    snapshot_id: Optional[str] = None


def format_duration(duration_ms: int) -> str:
    """
    Render milliseconds as m:ss. Remainder seconds are rounded half-up, and a
    remainder that rounds to 60 carries into the minutes.
    """
    minutes, remainder_ms = divmod(int(duration_ms), 60000)
    seconds = (remainder_ms + 500) // 1000
    if seconds == 60:
        minutes += 1
        seconds = 0
    return f"{minutes}:{seconds:02d}"


def to_playlist_track(track: dict) -> PlaylistTrack:
    return PlaylistTrack(
        name=track.get("name", ""),
        album=(track.get("album") or {}).get("name", ""),
        artists=", ".join(a.get("name", "") for a in track.get("artists", []) or []),
        duration=format_duration(track.get("duration_ms") or 0),
        uri=track.get("uri", ""),
        external_url=(track.get("external_urls") or {}).get("spotify"),
    )


def generate_playlist(client: SpotifyClient, artist_name: str, mood: str) -> List[PlaylistTrack]:
    logger.info(f"Generating playlist: artist={artist_name!r}, mood={mood!r}")

    artists = client.search_artists(artist_name)
    if not artists:
        logger.info(f"No artist matched {artist_name!r}")
        raise ArtistNotFoundError(artist_name)

    artist = artists[0]
    logger.debug(f"Seeding with artist {artist.get('name')!r} ({artist.get('id')})")

    recommended = client.get_recommendations(
        seed_artists=[artist["id"]],
        seed_genres=[mood],
        limit=RECOMMENDATION_LIMIT,
    )
    tracks = [to_playlist_track(t) for t in recommended[:RECOMMENDATION_LIMIT]]
    logger.info(f"Generated playlist with {len(tracks)} tracks")
    return tracks


def parse_track_uris(raw: str) -> List[str]:
    try:
        return _track_uris_adapter.validate_json(raw)
    except ValidationError as exc:
        logger.warning(f"Malformed trackUris payload: {exc.errors()[0].get('msg')}")
        raise MalformedInputError("trackUris must be a JSON array of strings") from exc


def save_playlist(client: SpotifyClient, playlist_name: str, track_uris: str) -> SavedPlaylist:
    logger.info(f"Saving playlist {playlist_name!r}")

    me = client.get_me()
    user_id = me["id"]

    created = client.create_playlist(user_id, playlist_name, public=False)
    playlist_id = created["id"]

    # Decoded only after creation; a bad payload leaves an empty playlist behind.
    uris = parse_track_uris(track_uris)
    snapshot_id = client.add_tracks_to_playlist(playlist_id, uris)

    return SavedPlaylist(
        playlist_id=playlist_id,
        name=playlist_name,
        url=(created.get("external_urls") or {}).get("spotify"),
        snapshot_id=snapshot_id,
    )


__all__ = [
    "ArtistNotFoundError",
    "MalformedInputError",
    "PlaylistError",
    "PlaylistTrack",
    "RECOMMENDATION_LIMIT",
    "SavedPlaylist",
    "format_duration",
    "generate_playlist",
    "parse_track_uris",
    "save_playlist",
]
