"""Tests for the Spotify adapter with a mocked spotipy client."""

from unittest.mock import Mock

import pytest
import spotipy

from tunebridge.config.settings import MatchingConfig
from tunebridge.domain.entities import ProviderCredential
from tunebridge.domain.errors import AuthorizationError, UpstreamError
from tunebridge.infrastructure.connectors.spotify import (
    SpotifyConnector,
    convert_spotify_track,
)


def _track(track_id, name="Song", artist="Artist", isrc=None, album_type="album", album_artist=None, release="2001-01-01"):
    return {
        "id": track_id,
        "name": name,
        "duration_ms": 200_000,
        "artists": [{"id": f"ar-{artist}", "name": artist}],
        "external_ids": {"isrc": isrc} if isrc else {},
        "album": {
            "id": f"al-{track_id}",
            "name": "Album",
            "album_type": album_type,
            "release_date": release,
            "artists": [{"id": f"ar-{album_artist or artist}", "name": album_artist or artist}],
            "external_ids": {"upc": "0602"},
        },
    }


@pytest.fixture
def client():
    return Mock()


@pytest.fixture
def connector(client):
    return SpotifyConnector(
        credential=ProviderCredential(user_id="u", provider="spotify", access_token="tok"),
        client=client,
        market="US",
        add_batch_size=100,
        page_size=100,
        retry_count=0,
        matching=MatchingConfig(),
    )


class TestSpotifyPlaylists:
    async def test_get_playlist_follows_pagination_and_skips_local_files(self, connector, client):
        # Arrange
        client.playlist.return_value = {
            "id": "pl",
            "name": "Mix",
            "description": "",
            "public": False,
            "tracks": {
                "items": [{"track": _track("t1", isrc="isrc1")}, {"track": {"id": None, "name": "local"}}],
                "next": "page-2",
            },
        }
        client.next.return_value = {"items": [{"track": _track("t2")}], "next": None}

        # Act
        playlist = await connector.get_playlist("pl")

        # Assert
        assert [t.id for t in playlist.tracks] == ["t1", "t2"]
        assert playlist.tracks[0].isrc == "ISRC1"
        assert playlist.tracks[0].upc == "0602"
        assert playlist.description is None
        assert playlist.public is False
        client.playlist.assert_called_once_with("pl", market="US")

    async def test_get_playlist_reads_every_page_in_order(self, connector, client):
        pages = [
            {
                "items": [{"track": _track(f"t{i}")} for i in range(start, end)],
                "next": f"page-{n + 2}" if end < 207 else None,
            }
            for n, (start, end) in enumerate([(0, 100), (100, 200), (200, 207)])
        ]
        client.playlist.return_value = {"id": "pl", "name": "Long Mix", "tracks": pages[0]}
        client.next.side_effect = pages[1:]

        playlist = await connector.get_playlist("pl")

        assert len(playlist.tracks) == 207
        assert [t.id for t in playlist.tracks] == [f"t{i}" for i in range(207)]
        assert client.next.call_count == 2

    async def test_create_playlist_for_current_user(self, connector, client):
        client.me.return_value = {"id": "me"}
        client.user_playlist_create.return_value = {"id": "new", "name": "Mix"}

        resolution = await connector.ensure_playlist(None, "Mix", description="d", public=True)

        assert resolution.created is True
        assert resolution.playlist_id == "new"
        client.user_playlist_create.assert_called_once_with(
            user="me", name="Mix", public=True, description="d"
        )

    async def test_existing_playlist_verified(self, connector, client):
        client.playlist.return_value = {"id": "pl", "name": "Existing"}

        resolution = await connector.ensure_playlist("pl", "Ignored")

        assert resolution.created is False
        assert resolution.name == "Existing"


class TestSpotifyWrites:
    async def test_add_tracks_in_batches_of_100(self, connector, client):
        client.playlist_items.return_value = {"items": [], "next": None}
        track_ids = [f"id{i}" for i in range(207)]

        added = await connector.add_tracks("pl", track_ids)

        batches = [call.args[1] for call in client.playlist_add_items.call_args_list]
        assert added == 207
        assert [len(batch) for batch in batches] == [100, 100, 7]
        assert batches[0][0] == "spotify:track:id0"
        assert batches[2][-1] == "spotify:track:id206"

    async def test_add_tracks_skips_existing(self, connector, client):
        client.playlist_items.return_value = {
            "items": [{"track": {"id": "a"}}],
            "next": "more",
        }
        client.next.return_value = {"items": [{"track": {"id": "b"}}], "next": None}

        added = await connector.add_tracks("pl", ["a", "c", "b", "c"])

        assert added == 2
        client.playlist_add_items.assert_called_once_with(
            "pl", ["spotify:track:c", "spotify:track:c"]
        )

    async def test_add_tracks_keeps_repeated_source_tracks(self, connector, client):
        client.playlist_items.return_value = {"items": [], "next": None}

        added = await connector.add_tracks("pl", ["a", "b", "a"])

        assert added == 3
        client.playlist_add_items.assert_called_once_with(
            "pl", ["spotify:track:a", "spotify:track:b", "spotify:track:a"]
        )

    async def test_rerun_appends_only_missing_copies(self, connector, client):
        client.playlist_items.return_value = {
            "items": [{"track": {"id": "a"}}, {"track": {"id": "b"}}],
            "next": None,
        }

        added = await connector.add_tracks("pl", ["a", "b", "a"])

        assert added == 1
        client.playlist_add_items.assert_called_once_with("pl", ["spotify:track:a"])

    async def test_nothing_to_add(self, connector, client):
        assert await connector.add_tracks("pl", []) == 0
        client.playlist_items.assert_not_called()


class TestSpotifyMatching:
    async def test_isrc_lookup_prefers_original_album_over_compilation(self, connector, client):
        client.search.return_value = {
            "tracks": {
                "items": [
                    _track("comp", isrc="USRC1", album_type="compilation", album_artist="Various Artists", release="1999"),
                    _track("orig", isrc="USRC1", release="2004"),
                ]
            }
        }

        matches = await connector.match_tracks_by_isrc(["usrc1"])

        assert matches["USRC1"].provider_track_id == "orig"
        assert matches["USRC1"].key == "isrc"
        client.search.assert_called_once_with(
            "isrc:USRC1", type="track", limit=10, market="US"
        )

    async def test_isrc_without_results_is_omitted(self, connector, client):
        client.search.return_value = {"tracks": {"items": []}}

        assert await connector.match_tracks_by_isrc(["USRC1"]) == {}

    async def test_metadata_search_query_and_selection(self, connector, client):
        client.search.return_value = {
            "tracks": {
                "items": [
                    _track("remix", name="Song (Remix)"),
                    _track("orig", name="Song"),
                ]
            }
        }

        match = await connector.match_by_metadata("Song (feat. X)", ["Artist"], 200_000)

        assert match.provider_track_id == "orig"
        assert match.key == "metadata"
        assert client.search.call_args.args[0] == "track:song artist:Artist"

    async def test_upc_resolves_first_track_of_album(self, connector, client):
        client.search.return_value = {
            "albums": {
                "items": [
                    {"id": "album-1", "name": "Album", "album_type": "album", "artists": [{"id": "a", "name": "Artist"}]}
                ]
            }
        }
        client.album_tracks.return_value = {"items": [{"id": "first", "name": "Song", "artists": [{"name": "Artist"}]}]}

        matches = await connector.match_tracks_by_upc(["0602"])

        assert matches["0602"].provider_track_id == "first"
        assert matches["0602"].key == "upc"


class TestSpotifyErrors:
    async def test_unauthorized_maps_to_authorization_error(self, connector, client):
        client.playlist.side_effect = spotipy.SpotifyException(401, -1, "The access token expired")

        with pytest.raises(AuthorizationError):
            await connector.get_playlist("pl")

    async def test_server_error_maps_to_upstream_error(self, connector, client):
        client.playlist.side_effect = spotipy.SpotifyException(502, -1, "Bad gateway")

        with pytest.raises(UpstreamError) as exc_info:
            await connector.get_playlist("pl")

        assert exc_info.value.status_code == 502
        assert exc_info.value.provider == "spotify"

    async def test_transient_error_retried(self, client):
        connector = SpotifyConnector(
            credential=ProviderCredential(user_id="u", provider="spotify", access_token="tok"),
            client=client,
            retry_count=1,
            retry_max_delay=0.0,
            matching=MatchingConfig(),
        )
        client.me.side_effect = [
            spotipy.SpotifyException(503, -1, "unavailable"),
            {"id": "me"},
        ]
        client.user_playlist_create.return_value = {"id": "new"}

        resolution = await connector.ensure_playlist(None, "Mix")

        assert resolution.playlist_id == "new"
        assert client.me.call_count == 2

    def test_missing_token_rejected(self):
        with pytest.raises(AuthorizationError):
            SpotifyConnector(
                credential=ProviderCredential(user_id="u", provider="spotify", access_token="")
            )


def test_convert_spotify_track():
    track = convert_spotify_track(_track("t1", isrc=" usrc1 "))

    assert track.id == "t1"
    assert track.artists == ["Artist"]
    assert track.album == "Album"
    assert track.isrc == "USRC1"
    assert track.duration_ms == 200_000
