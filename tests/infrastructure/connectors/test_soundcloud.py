"""Tests for the SoundCloud adapter against an httpx MockTransport."""

import json

import httpx
import pytest

from tunebridge.config.settings import MatchingConfig
from tunebridge.domain.entities import ProviderCredential
from tunebridge.domain.errors import AuthorizationError, MalformedDataError
from tunebridge.infrastructure.connectors.soundcloud import (
    SoundCloudConnector,
    convert_soundcloud_track,
)


def _sc_track(track_id, title="Song", isrc=None, username="uploader", artist=None):
    publisher = {}
    if isrc:
        publisher["isrc"] = isrc
    if artist:
        publisher["artist"] = artist
    return {
        "id": track_id,
        "title": title,
        "duration": 200_000,
        "user": {"username": username},
        "publisher_metadata": publisher,
    }


def _connector(handler, requests: list[httpx.Request]) -> SoundCloudConnector:
    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    return SoundCloudConnector(
        ProviderCredential(user_id="u", provider="soundcloud", access_token="sc-token"),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(recording)),
        base_url="https://api.soundcloud.test",
        retry_count=0,
        page_size=2,
        matching=MatchingConfig(),
    )


class TestSoundCloudPlaylists:
    async def test_get_playlist_follows_next_href(self):
        # Arrange
        def handler(request):
            path = request.url.path
            if path == "/playlists/42":
                return httpx.Response(200, json={"id": 42, "title": "Demos", "sharing": "private"})
            if path == "/playlists/42/tracks" and "cursor" not in request.url.params:
                return httpx.Response(
                    200,
                    json={
                        "collection": [_sc_track(1, artist="Band"), _sc_track(2)],
                        "next_href": "https://api.soundcloud.test/playlists/42/tracks?cursor=abc",
                    },
                )
            if path == "/playlists/42/tracks":
                return httpx.Response(200, json={"collection": [_sc_track(3)], "next_href": None})
            return httpx.Response(404)

        requests: list[httpx.Request] = []
        connector = _connector(handler, requests)

        # Act
        playlist = await connector.get_playlist("42")

        # Assert
        assert playlist.id == "42"
        assert [t.id for t in playlist.tracks] == ["1", "2", "3"]
        assert playlist.tracks[0].artists == ["Band", "uploader"]
        assert playlist.public is False
        assert requests[0].headers["Authorization"] == "OAuth sc-token"

    async def test_get_playlist_reads_every_page_in_order(self):
        pages = {"": (0, 100), "p2": (100, 200), "p3": (200, 207)}
        following = {"": "p2", "p2": "p3", "p3": None}

        def handler(request):
            if request.url.path == "/playlists/42":
                return httpx.Response(200, json={"id": 42, "title": "Long Mix"})
            cursor = request.url.params.get("cursor", "")
            start, end = pages[cursor]
            next_cursor = following[cursor]
            return httpx.Response(
                200,
                json={
                    "collection": [_sc_track(i) for i in range(start, end)],
                    "next_href": (
                        f"https://api.soundcloud.test/playlists/42/tracks?cursor={next_cursor}"
                        if next_cursor
                        else None
                    ),
                },
            )

        requests: list[httpx.Request] = []
        connector = _connector(handler, requests)

        playlist = await connector.get_playlist("42")

        assert len(playlist.tracks) == 207
        assert [t.id for t in playlist.tracks] == [str(i) for i in range(207)]
        assert len([r for r in requests if r.url.path.endswith("/tracks")]) == 3

    async def test_create_playlist(self):
        requests: list[httpx.Request] = []
        connector = _connector(
            lambda request: httpx.Response(201, json={"id": 7, "title": "Copied"}), requests
        )

        resolution = await connector.ensure_playlist(None, "Copied", description="d", public=False)

        body = json.loads(requests[0].content)
        assert body == {
            "playlist": {"title": "Copied", "sharing": "private", "tracks": [], "description": "d"}
        }
        assert resolution.playlist_id == "7"
        assert resolution.created is True

    async def test_missing_playlist_payload(self):
        connector = _connector(lambda request: httpx.Response(200, json={}), [])

        with pytest.raises(MalformedDataError):
            await connector.ensure_playlist("42", "Name")


class TestSoundCloudWrites:
    async def test_add_tracks_merges_existing_list(self):
        def handler(request):
            if request.method == "GET":
                return httpx.Response(
                    200,
                    json={"id": 42, "title": "Demos", "sharing": "public", "tracks": [{"id": 1}]},
                )
            return httpx.Response(200, json={"id": 42})

        requests: list[httpx.Request] = []
        connector = _connector(handler, requests)

        added = await connector.add_tracks("42", ["1", "2", "3"])

        put = next(r for r in requests if r.method == "PUT")
        body = json.loads(put.content)["playlist"]
        assert added == 2
        assert body["tracks"] == [
            {"urn": "soundcloud:tracks:1"},
            {"urn": "soundcloud:tracks:2"},
            {"urn": "soundcloud:tracks:3"},
        ]
        assert body["title"] == "Demos"

    async def test_add_tracks_keeps_repeated_source_tracks(self):
        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json={"id": 42, "title": "Demos", "tracks": []})
            return httpx.Response(200, json={"id": 42})

        requests: list[httpx.Request] = []
        connector = _connector(handler, requests)

        added = await connector.add_tracks("42", ["1", "2", "1"])

        put = next(r for r in requests if r.method == "PUT")
        urns = [t["urn"] for t in json.loads(put.content)["playlist"]["tracks"]]
        assert added == 3
        assert urns == ["soundcloud:tracks:1", "soundcloud:tracks:2", "soundcloud:tracks:1"]


class TestSoundCloudMatching:
    async def test_isrc_filtered_on_publisher_metadata(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"collection": [_sc_track(9, isrc="OTHER0000001"), _sc_track(10, isrc="usrc1")]},
            )

        requests: list[httpx.Request] = []
        connector = _connector(handler, requests)

        matches = await connector.match_tracks_by_isrc(["USRC1"])

        assert matches["USRC1"].provider_track_id == "10"
        assert requests[0].url.params["isrc"] == "USRC1"
        assert len(requests) == 1

    async def test_isrc_falls_back_to_text_query(self):
        def handler(request):
            if "q" in request.url.params:
                return httpx.Response(200, json={"collection": [_sc_track(5, isrc="USRC1")]})
            return httpx.Response(200, json={"collection": []})

        requests: list[httpx.Request] = []
        connector = _connector(handler, requests)

        matches = await connector.match_tracks_by_isrc(["USRC1"])

        assert matches["USRC1"].provider_track_id == "5"
        assert requests[1].url.params["q"] == "USRC1"

    async def test_metadata_search(self):
        def handler(request):
            return httpx.Response(
                200,
                json=[
                    _sc_track(1, title="Song (Live)", username="Artist"),
                    _sc_track(2, title="Song", username="Artist"),
                ],
            )

        requests: list[httpx.Request] = []
        connector = _connector(handler, requests)

        match = await connector.match_by_metadata("Song", ["Artist"], 200_000)

        assert match.provider_track_id == "2"
        assert requests[0].url.params["q"] == "song Artist"


class TestSoundCloudErrors:
    async def test_forbidden(self):
        connector = _connector(lambda request: httpx.Response(403), [])

        with pytest.raises(AuthorizationError):
            await connector.get_playlist("42")


def test_convert_soundcloud_track_codes():
    track = convert_soundcloud_track(
        {
            "id": 3,
            "title": "Tune",
            "user": {"username": "me"},
            "publisher_metadata": {"isrc": "usrc1", "upc_or_ean": "0602", "release_title": "EP"},
        }
    )

    assert track.id == "3"
    assert track.isrc == "USRC1"
    assert track.upc == "0602"
    assert track.album == "EP"
