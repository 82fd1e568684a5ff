import asyncio

import pytest
import spotipy

from soundlink_cli.api.catalog import SpotifyCatalog
from soundlink_cli.exceptions import CatalogError, ConfigurationError


def _track(i, **extra):
    item = {
        "id": f"t{i}",
        "name": f"Song {i}",
        "artists": [{"name": "Artist"}, {"name": "Guest"}],
        "duration_ms": 180_000 + i,
        "external_urls": {"spotify": f"https://open.spotify.com/track/t{i}"},
    }
    item.update(extra)
    return item


class FakeSpotify:
    """Serves canned Web API pages the way spotipy returns them."""

    def __init__(self, playlist_tracks=(), album_tracks=(), error=None):
        self.playlist_tracks = list(playlist_tracks)
        self.album_track_items = list(album_tracks)
        self.error = error
        self.page_requests = []

    def playlist(self, playlist_id, fields=None):
        if self.error:
            raise self.error
        return {
            "name": "Road Trip",
            "owner": {"display_name": "sam"},
            "tracks": {"total": len(self.playlist_tracks)},
        }

    def playlist_items(self, playlist_id, offset=0, limit=100, additional_types=()):
        self.page_requests.append((offset, limit))
        return {"items": [{"track": t} for t in self.playlist_tracks[offset : offset + limit]]}

    def album(self, album_id):
        return {
            "name": "Debut",
            "artists": [{"name": "Band"}],
            "tracks": {"total": len(self.album_track_items)},
        }

    def album_tracks(self, album_id, limit=50, offset=0):
        self.page_requests.append((offset, limit))
        return {"items": self.album_track_items[offset : offset + limit]}

    def track(self, track_id):
        return _track(7)


def test_missing_credentials_are_a_configuration_error():
    with pytest.raises(ConfigurationError):
        SpotifyCatalog("", "")


def test_playlist_is_paged_and_local_tracks_are_skipped():
    items = [_track(i) for i in range(150)]
    items[3] = _track(3, is_local=True)
    items[4] = None
    client = FakeSpotify(playlist_tracks=items)

    result = asyncio.run(
        SpotifyCatalog("", "", client=client).fetch_tracks(
            "https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M?si=x"
        )
    )

    assert result.name == "Road Trip"
    assert result.kind == "playlist"
    assert result.owner == "sam"
    assert len(result.tracks) == 148
    assert client.page_requests == [(0, 100), (100, 100)]
    first = result.tracks[0]
    assert first.query == "Song 0 Artist, Guest"
    assert first.duration_ms == 180_000
    assert first.url == "https://open.spotify.com/track/t0"


def test_album_tracks():
    client = FakeSpotify(album_tracks=[_track(i, external_urls={}) for i in range(3)])
    result = asyncio.run(
        SpotifyCatalog("", "", client=client).fetch_tracks(
            "https://open.spotify.com/album/4aawyAB9vmqN3uQ7FjRGTy"
        )
    )
    assert result.name == "Debut"
    assert result.owner == "Band"
    assert [t.url for t in result.tracks][0] == "https://open.spotify.com/track/t0"


def test_single_track_has_no_collection_name():
    result = asyncio.run(
        SpotifyCatalog("", "", client=FakeSpotify()).fetch_tracks(
            "https://open.spotify.com/track/6rqhFgbbKwnb9MLmUQDhG6"
        )
    )
    assert result.name is None
    assert [t.name for t in result.tracks] == ["Song 7"]


def test_malformed_link_is_rejected():
    with pytest.raises(CatalogError, match="Invalid Spotify link"):
        asyncio.run(
            SpotifyCatalog("", "", client=FakeSpotify()).fetch_tracks(
                "https://example.com/playlist/x"
            )
        )


def test_api_errors_are_described():
    client = FakeSpotify(error=spotipy.SpotifyException(404, -1, "not found"))
    with pytest.raises(CatalogError, match="not found"):
        asyncio.run(
            SpotifyCatalog("", "", client=client).fetch_tracks(
                "https://open.spotify.com/playlist/37i9dQZF1DXcBWIGoYBM5M"
            )
        )
