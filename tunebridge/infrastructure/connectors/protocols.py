"""Provider adapter protocol definitions and configuration types.

This module defines the capability set every streaming-service adapter exposes
to the transfer engine, so the reconciler and orchestrator never see provider
pagination, payload shapes or auth headers.

Key components:
- ConnectorConfig: TypedDict describing how the registry builds an adapter
- TransferProviderProtocol: Interface implemented once per service
"""

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol, TypedDict, runtime_checkable

if TYPE_CHECKING:
    from tunebridge.domain.entities import (
        MatchResult,
        PlaylistResolution,
        SourcePlaylist,
    )


class ConnectorConfig(TypedDict):
    """Registration entry returned by each connector module.

    Attributes:
        provider: Provider id the adapter serves
        factory: Callable building the adapter from (credential, http_client)
    """

    provider: str
    factory: Callable[..., Any]


@runtime_checkable
class TransferProviderProtocol(Protocol):
    """Uniform playlist transfer capabilities of one streaming service.

    Attributes:
        provider: Provider id, e.g. "spotify"
        add_batch_size: Maximum number of tracks accepted per write request
    """

    provider: str
    add_batch_size: int

    async def get_playlist(self, playlist_id: str) -> "SourcePlaylist":
        """Fetch a playlist and all of its tracks in source order.

        Follows pagination cursors until exhausted.
        """
        ...

    async def match_tracks_by_isrc(self, isrcs: list[str]) -> dict[str, "MatchResult"]:
        """Resolve catalog tracks by ISRC.

        Codes with no acceptable catalog entry are omitted from the result.
        """
        ...

    async def match_tracks_by_upc(self, upcs: list[str]) -> dict[str, "MatchResult"]:
        """Resolve releases by UPC, returning the first track of the winning release."""
        ...

    async def match_by_metadata(
        self,
        name: str,
        artists: list[str],
        duration_ms: int | None,
        isrc: str | None = None,
    ) -> "MatchResult | None":
        """Fuzzy text search fallback for tracks without a usable code."""
        ...

    async def ensure_playlist(
        self,
        playlist_id: str | None,
        name: str,
        description: str | None = None,
        public: bool | None = None,
    ) -> "PlaylistResolution":
        """Verify an existing destination playlist or create a new one."""
        ...

    async def add_tracks(self, playlist_id: str, track_ids: list[str]) -> int:
        """Append tracks in order, skipping copies already in the playlist.

        Each id already present in the destination absorbs one occurrence in
        ``track_ids``; repeats beyond that are appended, so passing the same
        list twice appends nothing the second time.

        Returns:
            Number of tracks newly appended
        """
        ...

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""
        ...
