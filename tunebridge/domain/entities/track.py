"""Track and playlist value objects exchanged with provider adapters.

Pure representations with zero external dependencies. None of these are
persisted individually; only aggregate counts and unmatched samples end up in
the job record.
"""

from typing import Any, Literal

from attrs import define, field, validators

MatchKey = Literal["isrc", "upc", "metadata"]


def _clean_code(value: str | None) -> str | None:
    """Normalize an ISRC/UPC: stripped, upper-cased, None when blank."""
    if value is None:
        return None
    cleaned = str(value).strip().upper()
    return cleaned or None


@define(frozen=True, slots=True)
class TransferTrack:
    """Source-side track as returned by a provider playlist fetch."""

    id: str = field(validator=validators.instance_of(str))
    name: str = field(validator=validators.instance_of(str))
    artists: list[str] = field(factory=list)
    album: str | None = None
    isrc: str | None = field(default=None, converter=_clean_code)
    upc: str | None = field(default=None, converter=_clean_code)
    duration_ms: int | None = None
    raw: Any = field(default=None, repr=False, eq=False)

    @property
    def has_isrc(self) -> bool:
        return self.isrc is not None

    def describe(self) -> str:
        """Human readable 'Artist - Title' label for logs."""
        artist = self.artists[0] if self.artists else "Unknown Artist"
        return f"{artist} - {self.name}"


@define(frozen=True, slots=True)
class SourcePlaylist:
    """Playlist metadata plus its ordered tracks."""

    id: str
    name: str
    description: str | None = None
    public: bool | None = None
    tracks: list[TransferTrack] = field(factory=list)


@define(frozen=True, slots=True)
class PlaylistResolution:
    """Outcome of ensuring a destination playlist exists."""

    playlist_id: str
    name: str
    created: bool


@define(frozen=True, slots=True)
class MatchResult:
    """Destination catalog track resolved for one source track."""

    provider_track_id: str
    key: MatchKey
    key_value: str | None = None
    name: str | None = None
    artists: list[str] = field(factory=list)
    isrc: str | None = None
    score: float | None = None


@define(frozen=True, slots=True)
class UnmatchedTrack:
    """Source track that could not be placed in the destination.

    Unmatched tracks are a reported outcome, not a job failure.
    """

    position: int
    name: str
    artists: list[str] = field(factory=list)
    isrc: str | None = None
    reason: Literal["no-match", "lookup-failed"] = "no-match"

    def as_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "name": self.name,
            "artists": list(self.artists),
            "isrc": self.isrc,
            "reason": self.reason,
        }
