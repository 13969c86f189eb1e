"""SoundCloud provider adapter.

SoundCloud carries ISRC/UPC only in optional publisher metadata, so exact
lookups are best-effort searches whose results are filtered on the exact code.
Playlist writes replace the whole track list: the adapter merges existing ids
with the additions and PUTs the result.
"""

from typing import Any, ClassVar

from attrs import define, field

from tunebridge.config import get_logger, resilient_operation, settings
from tunebridge.domain.entities import (
    MatchResult,
    PlaylistResolution,
    SourcePlaylist,
    TransferTrack,
    chunked,
)
from tunebridge.domain.errors import MalformedDataError
from tunebridge.domain.matching import (
    CatalogCandidate,
    MetadataCandidate,
    build_search_query,
)
from tunebridge.infrastructure.connectors.base_connector import (
    HttpConnector,
    new_track_ids,
    require_access_token,
    select_catalog_match,
    select_metadata_match,
)
from tunebridge.infrastructure.connectors.protocols import ConnectorConfig

logger = get_logger(__name__).bind(service="soundcloud")


@define(slots=True)
class SoundCloudConnector(HttpConnector):
    """SoundCloud implementation of the transfer capabilities."""

    provider: ClassVar[str] = "soundcloud"

    add_batch_size: int = field(factory=lambda: settings.api.soundcloud_add_batch_size)
    page_size: int = field(factory=lambda: settings.api.soundcloud_page_size)

    def __attrs_post_init__(self) -> None:
        require_access_token(self.credential, self.provider)
        if not self.base_url:
            self.base_url = settings.api.soundcloud_base_url

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"OAuth {self.credential.access_token}",
        }

    async def _get_playlist_resource(self, playlist_id: str, operation: str) -> dict[str, Any]:
        playlist = await self._request(
            "GET",
            f"/playlists/{playlist_id}",
            params={"representation": "full"},
            operation=operation,
        )
        if not isinstance(playlist, dict) or playlist.get("id") is None:
            raise MalformedDataError(
                "SoundCloud playlist not found in response",
                provider=self.provider,
                operation=operation,
            )
        return playlist

    async def _playlist_tracks(self, playlist_id: str) -> list[dict[str, Any]]:
        """All playlist tracks, following the linked_partitioning cursor."""
        tracks: list[dict[str, Any]] = []
        page = await self._request(
            "GET",
            f"/playlists/{playlist_id}/tracks",
            params={"linked_partitioning": "true", "limit": self.page_size},
            operation="get_playlist",
        )
        while page:
            if isinstance(page, list):
                tracks.extend(page)
                break
            tracks.extend(page.get("collection") or [])
            next_href = page.get("next_href")
            if not next_href:
                break
            page = await self._request("GET", next_href, operation="get_playlist")
        return [track for track in tracks if isinstance(track, dict)]

    @resilient_operation("get_soundcloud_playlist")
    async def get_playlist(self, playlist_id: str) -> SourcePlaylist:
        playlist = await self._get_playlist_resource(playlist_id, "get_playlist")
        items = await self._playlist_tracks(playlist_id)
        tracks = [convert_soundcloud_track(t) for t in items if t.get("id") is not None]

        logger.info(
            f"Fetched SoundCloud playlist with {len(tracks)} tracks",
            playlist_id=playlist_id,
        )
        return SourcePlaylist(
            id=str(playlist["id"]),
            name=playlist.get("title") or "Untitled Playlist",
            description=playlist.get("description") or None,
            public=(playlist.get("sharing") or "public") == "public",
            tracks=tracks,
        )

    async def _search(self, **params: Any) -> list[dict[str, Any]]:
        payload = await self._request(
            "GET",
            "/tracks",
            params={
                "linked_partitioning": "true",
                "limit": self.matching.metadata_candidate_limit,
                "filter": "public",
                **params,
            },
            operation="search_tracks",
        )
        if isinstance(payload, list):
            return payload
        return (payload or {}).get("collection") or []

    async def _match_code(self, key: str, code: str) -> MatchResult | None:
        results = await self._search(isrc=code) if key == "isrc" else []
        if not any(_publisher_code(t, key) == code for t in results):
            results = await self._search(q=code)

        candidates = [
            soundcloud_track_to_candidate(track, position)
            for position, track in enumerate(
                t for t in results if _publisher_code(t, key) == code
            )
        ]
        return select_catalog_match(key, code, candidates, self.matching, self.provider)

    @resilient_operation("match_soundcloud_tracks_by_isrc")
    async def match_tracks_by_isrc(self, isrcs: list[str]) -> dict[str, MatchResult]:
        matches: dict[str, MatchResult] = {}
        for isrc in dict.fromkeys(code.strip().upper() for code in isrcs if code):
            match = await self._match_code("isrc", isrc)
            if match:
                matches[isrc] = match
        return matches

    @resilient_operation("match_soundcloud_tracks_by_upc")
    async def match_tracks_by_upc(self, upcs: list[str]) -> dict[str, MatchResult]:
        matches: dict[str, MatchResult] = {}
        for upc in dict.fromkeys(code.strip().upper() for code in upcs if code):
            match = await self._match_code("upc", upc)
            if match:
                matches[upc] = match
        return matches

    @resilient_operation("match_soundcloud_by_metadata")
    async def match_by_metadata(
        self,
        name: str,
        artists: list[str],
        duration_ms: int | None,
        isrc: str | None = None,
    ) -> MatchResult | None:
        results = await self._search(q=build_search_query(name, artists))
        candidates = []
        for track in results:
            if track.get("id") is None:
                continue
            converted = convert_soundcloud_track(track)
            candidates.append(
                MetadataCandidate(
                    provider_track_id=converted.id,
                    name=converted.name,
                    artists=converted.artists,
                    album=converted.album,
                    duration_ms=converted.duration_ms,
                    isrc=converted.isrc,
                )
            )
        return select_metadata_match(
            name, artists, duration_ms, candidates, isrc, self.matching
        )

    @resilient_operation("ensure_soundcloud_playlist")
    async def ensure_playlist(
        self,
        playlist_id: str | None,
        name: str,
        description: str | None = None,
        public: bool | None = None,
    ) -> PlaylistResolution:
        if playlist_id:
            playlist = await self._request(
                "GET", f"/playlists/{playlist_id}", operation="ensure_playlist"
            )
            if not isinstance(playlist, dict) or playlist.get("id") is None:
                raise MalformedDataError(
                    "SoundCloud playlist not found in response",
                    provider=self.provider,
                    operation="ensure_playlist",
                )
            return PlaylistResolution(
                playlist_id=str(playlist["id"]),
                name=playlist.get("title") or name,
                created=False,
            )

        body: dict[str, Any] = {
            "title": name,
            "sharing": "private" if public is False else "public",
            "tracks": [],
        }
        if description:
            body["description"] = description

        logger.info(f"Creating SoundCloud playlist: {name}")
        created = await self._request(
            "POST", "/playlists", json={"playlist": body}, operation="ensure_playlist"
        )
        if not isinstance(created, dict) or created.get("id") is None:
            raise MalformedDataError(
                "Failed to create SoundCloud playlist",
                provider=self.provider,
                operation="ensure_playlist",
            )
        return PlaylistResolution(
            playlist_id=str(created["id"]),
            name=created.get("title") or name,
            created=True,
        )

    @resilient_operation("add_soundcloud_tracks")
    async def add_tracks(self, playlist_id: str, track_ids: list[str]) -> int:
        """Merge additions into the existing track list and PUT it back."""
        if not track_ids:
            return 0

        playlist = await self._get_playlist_resource(playlist_id, "add_tracks")
        current = [
            str(track["id"])
            for track in playlist.get("tracks") or []
            if isinstance(track, dict) and track.get("id") is not None
        ]
        additions = new_track_ids(current, track_ids)

        for batch in chunked(additions, self.add_batch_size):
            current.extend(batch)
            payload = {
                "playlist": {
                    "title": playlist.get("title"),
                    "sharing": playlist.get("sharing") or "public",
                    "tracks": [{"urn": f"soundcloud:tracks:{tid}"} for tid in current],
                }
            }
            if playlist.get("description"):
                payload["playlist"]["description"] = playlist["description"]
            await self._request(
                "PUT", f"/playlists/{playlist_id}", json=payload, operation="add_tracks"
            )

        logger.info(
            f"Added {len(additions)} tracks to SoundCloud playlist",
            playlist_id=playlist_id,
            skipped=len(track_ids) - len(additions),
        )
        return len(additions)


def _publisher_code(track: dict[str, Any], key: str) -> str | None:
    publisher = track.get("publisher_metadata") or {}
    if key == "isrc":
        value = publisher.get("isrc")
    else:
        value = publisher.get("upc_or_ean") or publisher.get("upc")
    return str(value).strip().upper() if value else None


def convert_soundcloud_track(track: dict[str, Any]) -> TransferTrack:
    """Convert a SoundCloud track to a TransferTrack.

    The publisher's artist credit comes first; the uploader's username is
    appended when it differs.
    """
    publisher = track.get("publisher_metadata") or {}
    artists: list[str] = []
    if publisher.get("artist"):
        artists.append(publisher["artist"])
    username = (track.get("user") or {}).get("username")
    if username and username not in artists:
        artists.append(username)

    return TransferTrack(
        id=str(track["id"]),
        name=track.get("title") or "",
        artists=artists,
        album=publisher.get("release_title") or publisher.get("album_title"),
        isrc=publisher.get("isrc"),
        upc=publisher.get("upc_or_ean") or publisher.get("upc"),
        duration_ms=track.get("duration"),
        raw=track,
    )


def soundcloud_track_to_candidate(track: dict[str, Any], position: int) -> CatalogCandidate:
    converted = convert_soundcloud_track(track)
    return CatalogCandidate(
        provider_track_id=converted.id,
        name=converted.name,
        artists=converted.artists,
        album_name=converted.album,
        release_date=track.get("release_date") or track.get("created_at"),
        isrc=converted.isrc,
        duration_ms=converted.duration_ms,
        position=position,
    )


def get_connector_config() -> ConnectorConfig:
    """SoundCloud connector configuration."""
    return {
        "provider": SoundCloudConnector.provider,
        "factory": lambda credential, http_client=None: SoundCloudConnector(
            credential,
            http_client=http_client,
            retry_count=settings.api.soundcloud_retry_count,
            retry_max_delay=settings.api.soundcloud_retry_max_delay,
        ),
    }
