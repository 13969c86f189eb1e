"""Spotify provider adapter with domain model conversion.

This module provides a connector for the Spotify Web API using the spotipy
library (https://spotipy.readthedocs.io/). Spotipy is synchronous, so every
call runs in a worker thread via ``asyncio.to_thread``.

Key components:
- SpotifyConnector: token-authenticated client implementing TransferProviderProtocol
- Conversion utilities: Spotify payloads to TransferTrack / catalog candidates

The module supports:
- Fetching playlists with full pagination
- ISRC and UPC lookups with deterministic catalog disambiguation
- Metadata search fallback scored by title, artist and duration
- Creating playlists and idempotent track appends in batches of 100
"""

import asyncio
from collections.abc import Callable
from typing import Any, ClassVar

from attrs import define, field
import backoff
import spotipy

from tunebridge.config import get_logger, resilient_operation, settings
from tunebridge.config.settings import MatchingConfig
from tunebridge.domain.entities import (
    MatchResult,
    PlaylistResolution,
    ProviderCredential,
    SourcePlaylist,
    TransferTrack,
    chunked,
)
from tunebridge.domain.errors import (
    AuthorizationError,
    MalformedDataError,
    TransferError,
    UpstreamError,
)
from tunebridge.domain.matching import (
    CatalogCandidate,
    MetadataCandidate,
    normalize_title,
)
from tunebridge.infrastructure.connectors.base_connector import (
    new_track_ids,
    require_access_token,
    select_catalog_match,
    select_metadata_match,
)
from tunebridge.infrastructure.connectors.protocols import ConnectorConfig

# Get contextual logger with service binding
logger = get_logger(__name__).bind(service="spotify")


def _is_permanent(error: Exception) -> bool:
    if isinstance(error, UpstreamError):
        return error.is_client_error
    return True


@define(slots=True)
class SpotifyConnector:
    """Thin wrapper around spotipy implementing the transfer capabilities.

    The client is built from the user's access token; token refresh belongs
    to the identity subsystem. All API calls go through ``_call`` which maps
    SpotifyException to the transfer error taxonomy and retries transient
    failures with exponential backoff.
    """

    provider: ClassVar[str] = "spotify"

    credential: ProviderCredential
    client: spotipy.Spotify | None = field(default=None, repr=False)
    market: str = field(factory=lambda: settings.credentials.spotify_market)
    add_batch_size: int = field(factory=lambda: settings.api.spotify_add_batch_size)
    page_size: int = field(factory=lambda: settings.api.spotify_page_size)
    retry_count: int = field(factory=lambda: settings.api.spotify_retry_count)
    retry_max_delay: float = field(
        factory=lambda: settings.api.spotify_retry_max_delay
    )
    matching: MatchingConfig = field(factory=lambda: settings.matching)

    def __attrs_post_init__(self) -> None:
        """Initialize Spotify client from the user access token."""
        token = require_access_token(self.credential, self.provider)
        if self.client is None:
            logger.debug("Initializing Spotify connector")
            self.client = spotipy.Spotify(
                auth=token,
                requests_timeout=settings.api.request_timeout,
                retries=0,
                status_retries=0,
            )

    async def aclose(self) -> None:
        """Spotipy manages its own session; nothing to release."""

    def _translate(self, error: spotipy.SpotifyException, operation: str) -> TransferError:
        status = getattr(error, "http_status", None)
        if status in (401, 403):
            return AuthorizationError(
                f"Spotify rejected the credential ({status})",
                provider=self.provider,
                operation=operation,
            )
        return UpstreamError(
            f"Spotify API error {status}: {getattr(error, 'msg', error)}",
            provider=self.provider,
            operation=operation,
            status_code=status,
            body=str(getattr(error, "msg", "")),
        )

    async def _call(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a spotipy call in a thread with error mapping and backoff."""

        @backoff.on_exception(
            backoff.expo,
            UpstreamError,
            max_tries=self.retry_count + 1,
            max_value=self.retry_max_delay,
            jitter=backoff.full_jitter,
            giveup=_is_permanent,
        )
        async def call_with_backoff() -> Any:
            try:
                return await asyncio.to_thread(func, *args, **kwargs)
            except spotipy.SpotifyException as e:
                raise self._translate(e, operation) from e

        return await call_with_backoff()

    @resilient_operation("get_spotify_playlist")
    async def get_playlist(self, playlist_id: str) -> SourcePlaylist:
        """Fetch a Spotify playlist with all tracks, following ``next`` cursors."""
        raw_playlist = await self._call(
            "get_playlist", self.client.playlist, playlist_id, market=self.market
        )
        if not isinstance(raw_playlist, dict):
            raise MalformedDataError(
                f"Invalid playlist response for ID {playlist_id}",
                provider=self.provider,
                operation="get_playlist",
            )

        page = raw_playlist.get("tracks") or {}
        items = list(page.get("items") or [])

        # Paginate until we get all tracks
        while page.get("next"):
            page = await self._call("get_playlist", self.client.next, page)
            if not isinstance(page, dict) or "items" not in page:
                logger.warning("Received invalid tracks data during pagination")
                break
            items.extend(page["items"] or [])

        tracks = []
        for item in items:
            track = (item or {}).get("track")
            if not track or not track.get("id"):
                # local files and removed tracks have no catalog id
                continue
            tracks.append(convert_spotify_track(track))

        logger.info(
            f"Fetched Spotify playlist with {len(tracks)} tracks",
            playlist_id=playlist_id,
            skipped=len(items) - len(tracks),
        )
        return SourcePlaylist(
            id=raw_playlist.get("id") or playlist_id,
            name=raw_playlist.get("name") or "Untitled Playlist",
            description=raw_playlist.get("description") or None,
            public=raw_playlist.get("public"),
            tracks=tracks,
        )

    @resilient_operation("match_spotify_tracks_by_isrc")
    async def match_tracks_by_isrc(self, isrcs: list[str]) -> dict[str, MatchResult]:
        matches: dict[str, MatchResult] = {}
        for isrc in dict.fromkeys(code.strip().upper() for code in isrcs if code):
            results = await self._call(
                "match_tracks_by_isrc",
                self.client.search,
                f"isrc:{isrc}",
                type="track",
                limit=min(self.matching.catalog_candidate_limit, 50),
                market=self.market,
            )
            items = ((results or {}).get("tracks") or {}).get("items") or []
            candidates = [
                spotify_track_to_candidate(track, position)
                for position, track in enumerate(items)
                if track and track.get("id") and _isrc_of(track) in (None, isrc)
            ]
            match = select_catalog_match(
                "isrc", isrc, candidates, self.matching, self.provider
            )
            if match:
                matches[isrc] = match

        logger.info(f"Matched {len(matches)}/{len(isrcs)} ISRCs on Spotify")
        return matches

    @resilient_operation("match_spotify_tracks_by_upc")
    async def match_tracks_by_upc(self, upcs: list[str]) -> dict[str, MatchResult]:
        matches: dict[str, MatchResult] = {}
        for upc in dict.fromkeys(code.strip().upper() for code in upcs if code):
            results = await self._call(
                "match_tracks_by_upc",
                self.client.search,
                f"upc:{upc}",
                type="album",
                limit=min(self.matching.catalog_candidate_limit, 50),
                market=self.market,
            )
            albums = ((results or {}).get("albums") or {}).get("items") or []
            candidates = [
                spotify_album_to_candidate(album, position)
                for position, album in enumerate(albums)
                if album and album.get("id")
            ]
            album_match = select_catalog_match(
                "upc", upc, candidates, self.matching, self.provider
            )
            if album_match is None:
                continue

            page = await self._call(
                "match_tracks_by_upc",
                self.client.album_tracks,
                album_match.provider_track_id,
                limit=1,
                market=self.market,
            )
            first = next(iter((page or {}).get("items") or []), None)
            if not first or not first.get("id"):
                continue
            matches[upc] = MatchResult(
                provider_track_id=first["id"],
                key="upc",
                key_value=upc,
                name=first.get("name"),
                artists=[a.get("name", "") for a in first.get("artists") or []],
                score=album_match.score,
            )
        return matches

    @resilient_operation("match_spotify_by_metadata")
    async def match_by_metadata(
        self,
        name: str,
        artists: list[str],
        duration_ms: int | None,
        isrc: str | None = None,
    ) -> MatchResult | None:
        title = normalize_title(name) or name
        query = f"track:{title}"
        if artists:
            query += f" artist:{artists[0]}"

        results = await self._call(
            "match_by_metadata",
            self.client.search,
            query,
            type="track",
            limit=min(self.matching.metadata_candidate_limit, 50),
            market=self.market,
        )
        items = ((results or {}).get("tracks") or {}).get("items") or []
        candidates = [
            MetadataCandidate(
                provider_track_id=track["id"],
                name=track.get("name") or "",
                artists=[a.get("name", "") for a in track.get("artists") or []],
                album=(track.get("album") or {}).get("name"),
                duration_ms=track.get("duration_ms"),
                isrc=_isrc_of(track),
            )
            for track in items
            if track and track.get("id")
        ]
        return select_metadata_match(
            name, artists, duration_ms, candidates, isrc, self.matching
        )

    @resilient_operation("ensure_spotify_playlist")
    async def ensure_playlist(
        self,
        playlist_id: str | None,
        name: str,
        description: str | None = None,
        public: bool | None = None,
    ) -> PlaylistResolution:
        if playlist_id:
            existing = await self._call(
                "ensure_playlist", self.client.playlist, playlist_id, fields="id,name"
            )
            return PlaylistResolution(
                playlist_id=(existing or {}).get("id") or playlist_id,
                name=(existing or {}).get("name") or name,
                created=False,
            )

        me = await self._call("ensure_playlist", self.client.me)
        user_id = (me or {}).get("id")
        if not user_id:
            raise MalformedDataError(
                "Spotify profile has no user id",
                provider=self.provider,
                operation="ensure_playlist",
            )

        logger.info(f"Creating Spotify playlist: {name}")
        created = await self._call(
            "ensure_playlist",
            self.client.user_playlist_create,
            user=user_id,
            name=name,
            public=bool(public) if public is not None else False,
            description=description or "",
        )
        if not created or not created.get("id"):
            raise MalformedDataError(
                "Failed to create playlist, received no id",
                provider=self.provider,
                operation="ensure_playlist",
            )
        return PlaylistResolution(
            playlist_id=created["id"], name=created.get("name") or name, created=True
        )

    async def _playlist_track_ids(self, playlist_id: str) -> list[str]:
        page = await self._call(
            "add_tracks",
            self.client.playlist_items,
            playlist_id,
            fields="items(track(id)),next",
            limit=self.page_size,
            additional_types=("track",),
        )
        ids: list[str] = []
        while isinstance(page, dict):
            ids.extend(
                item["track"]["id"]
                for item in page.get("items") or []
                if item and item.get("track") and item["track"].get("id")
            )
            if not page.get("next"):
                break
            page = await self._call("add_tracks", self.client.next, page)
        return ids

    @resilient_operation("add_spotify_tracks")
    async def add_tracks(self, playlist_id: str, track_ids: list[str]) -> int:
        """Append tracks in batches of ``add_batch_size``, skipping existing ones."""
        if not track_ids:
            return 0

        existing = await self._playlist_track_ids(playlist_id)
        additions = new_track_ids(existing, track_ids)
        for batch in chunked(additions, self.add_batch_size):
            await self._call(
                "add_tracks",
                self.client.playlist_add_items,
                playlist_id,
                [f"spotify:track:{track_id}" for track_id in batch],
            )

        logger.info(
            f"Added {len(additions)} tracks to Spotify playlist",
            playlist_id=playlist_id,
            skipped=len(track_ids) - len(additions),
        )
        return len(additions)


def _isrc_of(track: dict[str, Any]) -> str | None:
    isrc = (track.get("external_ids") or {}).get("isrc")
    return isrc.strip().upper() if isrc else None


def convert_spotify_track(track: dict[str, Any]) -> TransferTrack:
    """Convert a Spotify track object to a TransferTrack."""
    album = track.get("album") or {}
    return TransferTrack(
        id=track["id"],
        name=track.get("name") or "",
        artists=[a.get("name", "") for a in track.get("artists") or [] if a],
        album=album.get("name"),
        isrc=(track.get("external_ids") or {}).get("isrc"),
        upc=(album.get("external_ids") or {}).get("upc"),
        duration_ms=track.get("duration_ms"),
        raw=track,
    )


def spotify_track_to_candidate(track: dict[str, Any], position: int) -> CatalogCandidate:
    album = track.get("album") or {}
    return CatalogCandidate(
        provider_track_id=track["id"],
        name=track.get("name") or "",
        artists=[a.get("name", "") for a in track.get("artists") or []],
        artist_ids=[a["id"] for a in track.get("artists") or [] if a.get("id")],
        album_name=album.get("name"),
        album_artists=[a.get("name", "") for a in album.get("artists") or []],
        album_artist_ids=[a["id"] for a in album.get("artists") or [] if a.get("id")],
        album_type=album.get("album_type"),
        is_compilation=album.get("album_type") == "compilation",
        release_date=album.get("release_date"),
        isrc=_isrc_of(track),
        duration_ms=track.get("duration_ms"),
        position=position,
    )


def spotify_album_to_candidate(album: dict[str, Any], position: int) -> CatalogCandidate:
    """Album-level candidate; the album's own artists stand in for track artists."""
    artists = [a.get("name", "") for a in album.get("artists") or []]
    artist_ids = [a["id"] for a in album.get("artists") or [] if a.get("id")]
    return CatalogCandidate(
        provider_track_id=album["id"],
        name=album.get("name") or "",
        artists=artists,
        artist_ids=artist_ids,
        album_name=album.get("name"),
        album_artists=artists,
        album_artist_ids=artist_ids,
        album_type=album.get("album_type"),
        is_compilation=album.get("album_type") == "compilation",
        release_date=album.get("release_date"),
        position=position,
    )


def get_connector_config() -> ConnectorConfig:
    """Spotify connector configuration."""
    return {
        "provider": SpotifyConnector.provider,
        "factory": lambda credential, http_client=None: SpotifyConnector(credential),
    }
