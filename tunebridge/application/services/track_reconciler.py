"""Track reconciliation across streaming catalogs.

Resolves every source track to a destination catalog id using the strongest
identifier available: ISRC first, then (opt-in) UPC, then a fuzzy metadata
search. Results are written into an index-addressed slot list so the
destination order always equals the source order, regardless of how the
concurrent metadata lookups complete.
"""

import asyncio
from typing import TYPE_CHECKING, Any

from attrs import define, field

from tunebridge.config import get_logger, settings
from tunebridge.config.settings import MatchingConfig
from tunebridge.domain.entities import MatchResult, TransferTrack, UnmatchedTrack
from tunebridge.domain.errors import MalformedDataError, UpstreamError
from tunebridge.domain.matching import title_similarity

if TYPE_CHECKING:
    from tunebridge.infrastructure.connectors.protocols import TransferProviderProtocol

logger = get_logger(__name__).bind(service="reconciler")


@define(slots=True)
class ReconciliationStats:
    """Counters reported in job metadata."""

    requested: int = 0
    matched: int = 0
    unmatched: int = 0
    missing_isrc: int = 0
    exact: int = 0
    upc: int = 0
    metadata: int = 0
    lookup_failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "requested": self.requested,
            "matched": self.matched,
            "unmatched": self.unmatched,
            "missing_isrc": self.missing_isrc,
            "exact": self.exact,
            "upc": self.upc,
            "metadata": self.metadata,
            "lookup_failed": self.lookup_failed,
        }


@define(frozen=True, slots=True)
class ReconciliationResult:
    """Outcome of reconciling a source playlist against a destination catalog.

    Attributes:
        matches: One entry per source position, None where nothing matched
        unmatched: Source tracks that could not be placed, in source order
        stats: Aggregate counters
    """

    matches: list[MatchResult | None] = field(factory=list)
    unmatched: list[UnmatchedTrack] = field(factory=list)
    stats: ReconciliationStats = field(factory=ReconciliationStats)

    @property
    def track_ids(self) -> list[str]:
        """Destination ids in source order, skipping unmatched positions."""
        return [match.provider_track_id for match in self.matches if match]


@define(slots=True)
class TrackReconciler:
    """Resolves source tracks to destination catalog ids.

    Example:
        reconciler = TrackReconciler()
        result = await reconciler.reconcile(playlist.tracks, target, "spotify")
        await target.add_tracks(playlist_id, result.track_ids)
    """

    config: MatchingConfig = field(factory=lambda: settings.matching)

    async def reconcile(
        self,
        tracks: list[TransferTrack],
        target: "TransferProviderProtocol",
        source_provider: str,
    ) -> ReconciliationResult:
        """Match every track, preserving source order.

        Raises:
            AuthorizationError: The destination rejected the credential
            UpstreamError: A batch ISRC/UPC lookup failed
        """
        slots: list[MatchResult | None] = [None] * len(tracks)
        failed: set[int] = set()
        stats = ReconciliationStats(
            requested=len(tracks),
            missing_isrc=sum(1 for track in tracks if not track.has_isrc),
        )

        if source_provider in self.config.unreliable_isrc_providers:
            logger.debug(
                "Skipping ISRC pass for unreliable source", source=source_provider
            )
        else:
            await self._match_by_isrc(tracks, slots, target)

        if self.config.use_upc_pass:
            await self._match_by_upc(tracks, slots, target)

        await self._match_by_metadata(tracks, slots, failed, target)

        unmatched = []
        for position, (track, match) in enumerate(zip(tracks, slots, strict=True)):
            if match is None:
                unmatched.append(
                    UnmatchedTrack(
                        position=position,
                        name=track.name,
                        artists=list(track.artists),
                        isrc=track.isrc,
                        reason="lookup-failed" if position in failed else "no-match",
                    )
                )
                continue
            if match.key == "isrc":
                stats.exact += 1
            elif match.key == "upc":
                stats.upc += 1
            else:
                stats.metadata += 1

        stats.matched = len(tracks) - len(unmatched)
        stats.unmatched = len(unmatched)
        stats.lookup_failed = len(failed)

        logger.info(
            f"Reconciled {stats.matched}/{stats.requested} tracks",
            target=target.provider,
            exact=stats.exact,
            upc=stats.upc,
            metadata=stats.metadata,
            unmatched=stats.unmatched,
        )
        return ReconciliationResult(matches=slots, unmatched=unmatched, stats=stats)

    async def _match_by_isrc(
        self,
        tracks: list[TransferTrack],
        slots: list[MatchResult | None],
        target: "TransferProviderProtocol",
    ) -> None:
        isrcs = list(dict.fromkeys(track.isrc for track in tracks if track.has_isrc))
        if not isrcs:
            return

        found = await target.match_tracks_by_isrc(isrcs)
        for position, track in enumerate(tracks):
            if track.has_isrc and track.isrc in found:
                slots[position] = found[track.isrc]

    async def _match_by_upc(
        self,
        tracks: list[TransferTrack],
        slots: list[MatchResult | None],
        target: "TransferProviderProtocol",
    ) -> None:
        pending = [
            position
            for position, track in enumerate(tracks)
            if slots[position] is None and track.upc
        ]
        if not pending:
            return

        found = await target.match_tracks_by_upc(
            list(dict.fromkeys(tracks[position].upc for position in pending))
        )
        for position in pending:
            track = tracks[position]
            match = found.get(track.upc)
            if match is None:
                continue
            # a UPC identifies a release, so the track title must agree as well
            similarity = title_similarity(track.name, match.name or "")
            if similarity >= self.config.upc_title_min_similarity:
                slots[position] = match
            else:
                logger.debug(
                    "Rejected UPC match with different title",
                    position=position,
                    similarity=round(similarity, 3),
                )

    async def _match_by_metadata(
        self,
        tracks: list[TransferTrack],
        slots: list[MatchResult | None],
        failed: set[int],
        target: "TransferProviderProtocol",
    ) -> None:
        pending = [
            position
            for position, track in enumerate(tracks)
            if slots[position] is None and track.name.strip()
        ]
        if not pending:
            return

        semaphore = asyncio.Semaphore(max(1, self.config.metadata_concurrency))

        async def lookup(position: int) -> None:
            track = tracks[position]
            async with semaphore:
                try:
                    slots[position] = await target.match_by_metadata(
                        track.name, track.artists, track.duration_ms, isrc=track.isrc
                    )
                except (UpstreamError, MalformedDataError) as e:
                    failed.add(position)
                    logger.warning(
                        "Metadata lookup failed",
                        position=position,
                        track=track.describe(),
                        error=str(e),
                        error_type=type(e).__name__,
                    )

        outcomes: list[Any] = await asyncio.gather(
            *(lookup(position) for position in pending), return_exceptions=True
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
