"""Apple Music provider adapter.

Talks to the Apple Music REST API with httpx. Requests carry the application
developer token (``credentials.apple_music_developer_token``) as a bearer token
and the user's Music-User-Token from the credential store.

Library playlists reference library song ids; ISRCs only exist on catalog
songs, so tracks fetched from a library playlist are backfilled with ISRCs
through their catalog ids. Catalog lookups are scoped to the user's
storefront, which is fetched once per adapter instance.
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
from tunebridge.domain.errors import AuthorizationError, MalformedDataError
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

logger = get_logger(__name__).bind(service="apple_music")

LIBRARY_PLAYLISTS = "/v1/me/library/playlists"


@define(slots=True)
class AppleMusicConnector(HttpConnector):
    """Apple Music implementation of the transfer capabilities."""

    provider: ClassVar[str] = "apple_music"

    developer_token: str = field(
        factory=lambda: settings.credentials.apple_music_developer_token, repr=False
    )
    add_batch_size: int = field(
        factory=lambda: settings.api.apple_music_add_batch_size
    )
    catalog_chunk_size: int = field(
        factory=lambda: settings.api.apple_music_catalog_chunk_size
    )
    default_storefront: str = field(
        factory=lambda: settings.api.apple_music_default_storefront
    )
    _storefront: str | None = field(default=None, init=False)

    def __attrs_post_init__(self) -> None:
        require_access_token(self.credential, self.provider)
        if not self.developer_token:
            raise AuthorizationError(
                "Apple Music developer token is not configured",
                provider=self.provider,
                operation="authorize",
            )
        if not self.base_url:
            self.base_url = settings.api.apple_music_base_url

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.developer_token}",
            "Music-User-Token": self.credential.access_token,
        }

    async def storefront(self) -> str:
        """User storefront (e.g. "us"), cached after the first lookup."""
        if self._storefront is None:
            payload = await self._request(
                "GET", "/v1/me/storefront", operation="get_storefront"
            )
            data = (payload or {}).get("data") or []
            self._storefront = (data[0].get("id") if data else None) or (
                self.default_storefront
            )
            logger.debug(f"Using Apple Music storefront {self._storefront}")
        return self._storefront

    async def _catalog_songs_by_ids(self, catalog_ids: list[str]) -> dict[str, Any]:
        storefront = await self.storefront()
        songs: dict[str, Any] = {}
        for chunk in chunked(catalog_ids, self.catalog_chunk_size):
            payload = await self._request(
                "GET",
                f"/v1/catalog/{storefront}/songs",
                params={"ids": ",".join(chunk)},
                operation="get_catalog_songs",
            )
            for song in (payload or {}).get("data") or []:
                if song.get("id"):
                    songs[song["id"]] = song
        return songs

    async def _paginate(
        self, first_page: dict[str, Any] | None, operation: str
    ) -> list[dict[str, Any]]:
        """Collect ``data`` items across ``next`` links."""
        items: list[dict[str, Any]] = []
        page = first_page
        while page:
            items.extend(item for item in page.get("data") or [] if item)
            next_url = page.get("next")
            if not next_url:
                break
            page = await self._request(
                "GET", next_url, operation=operation, allow_not_found=True
            )
        return items

    @resilient_operation("get_apple_music_playlist")
    async def get_playlist(self, playlist_id: str) -> SourcePlaylist:
        payload = await self._request(
            "GET",
            f"{LIBRARY_PLAYLISTS}/{playlist_id}",
            params={"include": "tracks"},
            operation="get_playlist",
        )
        data = (payload or {}).get("data") or []
        if not data:
            raise MalformedDataError(
                "Apple Music playlist not found in response",
                provider=self.provider,
                operation="get_playlist",
            )
        playlist = data[0]
        attributes = playlist.get("attributes") or {}
        track_page = (playlist.get("relationships") or {}).get("tracks")
        items = await self._paginate(track_page, "get_playlist")

        tracks = [convert_apple_library_track(item) for item in items if item.get("id")]
        tracks = await self._backfill_isrcs(tracks)

        logger.info(
            f"Fetched Apple Music playlist with {len(tracks)} tracks",
            playlist_id=playlist_id,
        )
        return SourcePlaylist(
            id=playlist.get("id") or playlist_id,
            name=attributes.get("name") or "Untitled Playlist",
            description=(attributes.get("description") or {}).get("standard"),
            public=attributes.get("isPublic"),
            tracks=tracks,
        )

    async def _backfill_isrcs(self, tracks: list[TransferTrack]) -> list[TransferTrack]:
        """Fill missing ISRCs from catalog songs referenced by playParams.catalogId."""
        missing = {
            _catalog_id(track.raw): index
            for index, track in enumerate(tracks)
            if not track.isrc and _catalog_id(track.raw)
        }
        if not missing:
            return tracks

        songs = await self._catalog_songs_by_ids(list(dict.fromkeys(missing)))
        backfilled = list(tracks)
        for index, track in enumerate(tracks):
            catalog_id = _catalog_id(track.raw)
            if track.isrc or not catalog_id or catalog_id not in songs:
                continue
            isrc = (songs[catalog_id].get("attributes") or {}).get("isrc")
            if isrc:
                backfilled[index] = TransferTrack(
                    id=track.id,
                    name=track.name,
                    artists=track.artists,
                    album=track.album,
                    isrc=isrc,
                    upc=track.upc,
                    duration_ms=track.duration_ms,
                    raw=track.raw,
                )
        logger.debug(f"Backfilled ISRCs for {len(songs)} catalog songs")
        return backfilled

    async def _albums_by_id(self, songs: list[dict[str, Any]]) -> dict[str, Any]:
        """Album resources for the songs, fetching any not returned inline."""
        albums: dict[str, Any] = {}
        missing: list[str] = []
        for song in songs:
            for album in _relationship(song, "albums"):
                if not album.get("id"):
                    continue
                if album.get("attributes"):
                    albums[album["id"]] = album
                else:
                    missing.append(album["id"])

        missing = [album_id for album_id in dict.fromkeys(missing) if album_id not in albums]
        if missing:
            storefront = await self.storefront()
            for chunk in chunked(missing, self.catalog_chunk_size):
                payload = await self._request(
                    "GET",
                    f"/v1/catalog/{storefront}/albums",
                    params={"ids": ",".join(chunk)},
                    operation="get_catalog_albums",
                )
                for album in (payload or {}).get("data") or []:
                    if album.get("id"):
                        albums[album["id"]] = album
        return albums

    @resilient_operation("match_apple_music_tracks_by_isrc")
    async def match_tracks_by_isrc(self, isrcs: list[str]) -> dict[str, MatchResult]:
        storefront = await self.storefront()
        codes = list(dict.fromkeys(code.strip().upper() for code in isrcs if code))
        matches: dict[str, MatchResult] = {}

        for chunk in chunked(codes, self.catalog_chunk_size):
            payload = await self._request(
                "GET",
                f"/v1/catalog/{storefront}/songs",
                params={"filter[isrc]": ",".join(chunk), "include": "albums,artists"},
                operation="match_tracks_by_isrc",
            )
            songs = [s for s in (payload or {}).get("data") or [] if s.get("id")]
            albums = await self._albums_by_id(songs)

            by_isrc: dict[str, list[CatalogCandidate]] = {}
            for song in songs:
                isrc = ((song.get("attributes") or {}).get("isrc") or "").strip().upper()
                if isrc not in chunk:
                    continue
                group = by_isrc.setdefault(isrc, [])
                group.append(apple_song_to_candidate(song, albums, len(group)))

            for isrc, candidates in by_isrc.items():
                match = select_catalog_match(
                    "isrc", isrc, candidates, self.matching, self.provider
                )
                if match:
                    matches[isrc] = match

        logger.info(f"Matched {len(matches)}/{len(codes)} ISRCs on Apple Music")
        return matches

    @resilient_operation("match_apple_music_tracks_by_upc")
    async def match_tracks_by_upc(self, upcs: list[str]) -> dict[str, MatchResult]:
        storefront = await self.storefront()
        codes = list(dict.fromkeys(code.strip().upper() for code in upcs if code))
        matches: dict[str, MatchResult] = {}

        for chunk in chunked(codes, self.catalog_chunk_size):
            payload = await self._request(
                "GET",
                f"/v1/catalog/{storefront}/albums",
                params={"filter[upc]": ",".join(chunk), "include": "tracks"},
                operation="match_tracks_by_upc",
            )
            by_upc: dict[str, list[tuple[CatalogCandidate, dict[str, Any]]]] = {}
            for album in (payload or {}).get("data") or []:
                upc = ((album.get("attributes") or {}).get("upc") or "").strip().upper()
                if upc not in chunk or not album.get("id"):
                    continue
                group = by_upc.setdefault(upc, [])
                group.append((apple_album_to_candidate(album, len(group)), album))

            for upc, entries in by_upc.items():
                winner = select_catalog_match(
                    "upc", upc, [candidate for candidate, _ in entries], self.matching, self.provider
                )
                if winner is None:
                    continue
                album = next(a for c, a in entries if c.provider_track_id == winner.provider_track_id)
                first = next(iter(_relationship(album, "tracks")), None)
                if not first or not first.get("id"):
                    continue
                attributes = first.get("attributes") or {}
                matches[upc] = MatchResult(
                    provider_track_id=first["id"],
                    key="upc",
                    key_value=upc,
                    name=attributes.get("name"),
                    artists=[attributes["artistName"]] if attributes.get("artistName") else [],
                    isrc=attributes.get("isrc"),
                    score=winner.score,
                )
        return matches

    @resilient_operation("match_apple_music_by_metadata")
    async def match_by_metadata(
        self,
        name: str,
        artists: list[str],
        duration_ms: int | None,
        isrc: str | None = None,
    ) -> MatchResult | None:
        storefront = await self.storefront()
        payload = await self._request(
            "GET",
            f"/v1/catalog/{storefront}/search",
            params={
                "term": build_search_query(name, artists),
                "types": "songs",
                "limit": min(self.matching.metadata_candidate_limit, 25),
            },
            operation="match_by_metadata",
        )
        songs = (((payload or {}).get("results") or {}).get("songs") or {}).get("data") or []
        candidates = []
        for song in songs:
            if not song.get("id"):
                continue
            attributes = song.get("attributes") or {}
            candidates.append(
                MetadataCandidate(
                    provider_track_id=song["id"],
                    name=attributes.get("name") or "",
                    artists=[attributes["artistName"]] if attributes.get("artistName") else [],
                    album=attributes.get("albumName"),
                    duration_ms=attributes.get("durationInMillis"),
                    isrc=attributes.get("isrc"),
                )
            )
        return select_metadata_match(
            name, artists, duration_ms, candidates, isrc, self.matching
        )

    @resilient_operation("ensure_apple_music_playlist")
    async def ensure_playlist(
        self,
        playlist_id: str | None,
        name: str,
        description: str | None = None,
        public: bool | None = None,
    ) -> PlaylistResolution:
        if playlist_id:
            payload = await self._request(
                "GET", f"{LIBRARY_PLAYLISTS}/{playlist_id}", operation="ensure_playlist"
            )
            data = (payload or {}).get("data") or [{}]
            return PlaylistResolution(
                playlist_id=data[0].get("id") or playlist_id,
                name=(data[0].get("attributes") or {}).get("name") or name,
                created=False,
            )

        attributes: dict[str, Any] = {"name": name}
        if description:
            attributes["description"] = description
        logger.info(f"Creating Apple Music playlist: {name}")
        payload = await self._request(
            "POST",
            LIBRARY_PLAYLISTS,
            json={"attributes": attributes},
            operation="ensure_playlist",
        )
        data = (payload or {}).get("data") or []
        if not data or not data[0].get("id"):
            raise MalformedDataError(
                "Failed to create Apple Music playlist",
                provider=self.provider,
                operation="ensure_playlist",
            )
        return PlaylistResolution(playlist_id=data[0]["id"], name=name, created=True)

    async def _playlist_track_ids(self, playlist_id: str) -> list[str]:
        """Library and catalog ids of the tracks already in a library playlist."""
        # an empty library playlist answers 404 on its tracks relationship
        first_page = await self._request(
            "GET",
            f"{LIBRARY_PLAYLISTS}/{playlist_id}/tracks",
            operation="add_tracks",
            allow_not_found=True,
        )
        ids: list[str] = []
        for item in await self._paginate(first_page, "add_tracks"):
            ids.extend({item.get("id"), _catalog_id(item)} - {None, ""})
        return ids

    @resilient_operation("add_apple_music_tracks")
    async def add_tracks(self, playlist_id: str, track_ids: list[str]) -> int:
        if not track_ids:
            return 0

        existing = await self._playlist_track_ids(playlist_id)
        additions = new_track_ids(existing, track_ids)
        for batch in chunked(additions, self.add_batch_size):
            await self._request(
                "POST",
                f"{LIBRARY_PLAYLISTS}/{playlist_id}/tracks",
                json={"data": [{"id": track_id, "type": "songs"} for track_id in batch]},
                operation="add_tracks",
            )

        logger.info(
            f"Added {len(additions)} tracks to Apple Music playlist",
            playlist_id=playlist_id,
            skipped=len(track_ids) - len(additions),
        )
        return len(additions)


def _relationship(resource: dict[str, Any], name: str) -> list[dict[str, Any]]:
    return ((resource.get("relationships") or {}).get(name) or {}).get("data") or []


def _catalog_id(item: Any) -> str | None:
    if not isinstance(item, dict):
        return None
    play_params = (item.get("attributes") or {}).get("playParams") or {}
    return play_params.get("catalogId")


def convert_apple_library_track(item: dict[str, Any]) -> TransferTrack:
    """Convert a library song resource to a TransferTrack."""
    attributes = item.get("attributes") or {}
    artist = attributes.get("artistName")
    artists = artist if isinstance(artist, list) else [artist] if artist else []
    return TransferTrack(
        id=item["id"],
        name=attributes.get("name") or "",
        artists=artists,
        album=attributes.get("albumName"),
        isrc=attributes.get("isrc"),
        duration_ms=attributes.get("durationInMillis"),
        raw=item,
    )


def apple_song_to_candidate(
    song: dict[str, Any], albums: dict[str, Any], position: int
) -> CatalogCandidate:
    attributes = song.get("attributes") or {}
    album_ref = next(iter(_relationship(song, "albums")), {})
    album = albums.get(album_ref.get("id"), album_ref)
    album_attributes = album.get("attributes") or {}
    album_artist = album_attributes.get("artistName")
    return CatalogCandidate(
        provider_track_id=song["id"],
        name=attributes.get("name") or "",
        artists=[attributes["artistName"]] if attributes.get("artistName") else [],
        album_name=album_attributes.get("name") or attributes.get("albumName"),
        album_artists=[album_artist] if album_artist else [],
        album_type="single" if album_attributes.get("isSingle") else (
            "album" if album_attributes else None
        ),
        is_compilation=bool(album_attributes.get("isCompilation")),
        release_date=attributes.get("releaseDate") or album_attributes.get("releaseDate"),
        isrc=attributes.get("isrc"),
        duration_ms=attributes.get("durationInMillis"),
        position=position,
    )


def apple_album_to_candidate(album: dict[str, Any], position: int) -> CatalogCandidate:
    attributes = album.get("attributes") or {}
    artist = attributes.get("artistName")
    return CatalogCandidate(
        provider_track_id=album["id"],
        name=attributes.get("name") or "",
        artists=[artist] if artist else [],
        album_name=attributes.get("name"),
        album_artists=[artist] if artist else [],
        album_type="single" if attributes.get("isSingle") else "album",
        is_compilation=bool(attributes.get("isCompilation")),
        release_date=attributes.get("releaseDate"),
        position=position,
    )


def get_connector_config() -> ConnectorConfig:
    """Apple Music connector configuration."""
    return {
        "provider": AppleMusicConnector.provider,
        "factory": lambda credential, http_client=None: AppleMusicConnector(
            credential,
            http_client=http_client,
            retry_count=settings.api.apple_music_retry_count,
            retry_max_delay=settings.api.apple_music_retry_max_delay,
        ),
    }
