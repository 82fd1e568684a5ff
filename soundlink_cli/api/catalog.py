"""
Catalog client that expands Spotify track, album and playlist links into the
track metadata used to build search queries.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import spotipy
from spotipy.oauth2 import SpotifyClientCredentials

from soundlink_cli.exceptions import CatalogError, ConfigurationError
from soundlink_cli.utils.path import parse_spotify_url

log = logging.getLogger(__name__)

PLAYLIST_PAGE_SIZE = 100
ALBUM_PAGE_SIZE = 50


@dataclass(frozen=True)
class CatalogTrack:
    """One track as described by the catalog."""

    name: str
    artist: str
    duration_ms: int | None = None
    url: str | None = None

    @property
    def query(self) -> str:
        """The search query, also used as the link cache key."""
        return f"{self.name} {self.artist}"


@dataclass
class CatalogResult:
    """A catalog link expanded into its tracks."""

    name: str | None
    kind: str
    tracks: list[CatalogTrack] = field(default_factory=list)
    owner: str = ""


class CatalogClient(Protocol):
    """Anything that can expand a catalog link into tracks."""

    async def fetch_tracks(self, link: str) -> CatalogResult: ...


def _join_artists(artists: list[dict[str, Any]] | None) -> str:
    return ", ".join(a.get("name", "") for a in artists or [] if a)


def _to_track(item: dict[str, Any] | None) -> CatalogTrack | None:
    if not item or item.get("is_local"):
        return None
    track_id = item.get("id")
    url = (item.get("external_urls") or {}).get("spotify") or (
        f"https://open.spotify.com/track/{track_id}" if track_id else None
    )
    return CatalogTrack(
        name=item.get("name", ""),
        artist=_join_artists(item.get("artists")),
        duration_ms=item.get("duration_ms"),
        url=url,
    )


class SpotifyCatalog:
    """
    Fetches catalog metadata through the Spotify Web API with the client
    credentials flow. ``spotipy`` is synchronous, so every call runs in a
    worker thread.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        client: spotipy.Spotify | None = None,
    ):
        """
        Args:
            client_id: Spotify application client ID.
            client_secret: Spotify application client secret.
            client: A pre-built client, mainly for tests.
        """
        if client is None and not (client_id and client_secret):
            raise ConfigurationError(
                "Spotify credentials are not set. Add spotify_client_id and "
                "spotify_client_secret to the configuration file."
            )
        self._client = client or spotipy.Spotify(
            auth_manager=SpotifyClientCredentials(
                client_id=client_id, client_secret=client_secret
            ),
            requests_timeout=15,
            retries=3,
        )

    async def fetch_tracks(self, link: str) -> CatalogResult:
        """
        Expands a catalog link into a name and its tracks.

        Raises:
            CatalogError: If the link is malformed or the API rejects it.
        """
        parsed = parse_spotify_url(link)
        if not parsed:
            raise CatalogError(f"Invalid Spotify link: {link}")
        kind, item_id = parsed

        try:
            return await asyncio.to_thread(self._fetch_sync, kind, item_id)
        except spotipy.SpotifyException as e:
            raise CatalogError(self._describe_error(e)) from e

    def _fetch_sync(self, kind: str, item_id: str) -> CatalogResult:
        if kind == "playlist":
            return self._fetch_playlist(item_id)
        if kind == "album":
            return self._fetch_album(item_id)
        return self._fetch_track(item_id)

    def _fetch_playlist(self, playlist_id: str) -> CatalogResult:
        data = self._client.playlist(playlist_id, fields="name,owner,tracks.total")
        result = CatalogResult(
            name=data.get("name"),
            kind="playlist",
            owner=(data.get("owner") or {}).get("display_name") or "",
        )
        total = (data.get("tracks") or {}).get("total", 0)
        offset = 0
        while offset < total:
            page = self._client.playlist_items(
                playlist_id,
                offset=offset,
                limit=PLAYLIST_PAGE_SIZE,
                additional_types=("track",),
            )
            items = page.get("items", [])
            for item in items:
                if track := _to_track(item.get("track")):
                    result.tracks.append(track)
            if not items:
                break
            offset += PLAYLIST_PAGE_SIZE
        log.debug(f"Fetched {len(result.tracks)} tracks from playlist '{result.name}'.")
        return result

    def _fetch_album(self, album_id: str) -> CatalogResult:
        data = self._client.album(album_id)
        result = CatalogResult(
            name=data.get("name"),
            kind="album",
            owner=_join_artists(data.get("artists")),
        )
        total = (data.get("tracks") or {}).get("total", 0)
        offset = 0
        while offset < total:
            page = self._client.album_tracks(
                album_id, limit=ALBUM_PAGE_SIZE, offset=offset
            )
            items = page.get("items", [])
            for item in items:
                if track := _to_track(item):
                    result.tracks.append(track)
            if not items:
                break
            offset += ALBUM_PAGE_SIZE
        log.debug(f"Fetched {len(result.tracks)} tracks from album '{result.name}'.")
        return result

    def _fetch_track(self, track_id: str) -> CatalogResult:
        data = self._client.track(track_id)
        track = _to_track(data)
        return CatalogResult(
            name=None,
            kind="track",
            tracks=[track] if track else [],
            owner=_join_artists(data.get("artists")),
        )

    @staticmethod
    def _describe_error(error: spotipy.SpotifyException) -> str:
        if error.http_status == 404:
            return (
                "Spotify resource not found. Check if the link is correct and the "
                "playlist/album is public."
            )
        if error.http_status == 401:
            return "Bad or expired Spotify token. Check your credentials."
        if error.http_status == 403:
            return "Not authorized to access this resource. It may be a private playlist."
        return f"Error fetching from Spotify: {error.msg}"
