"""Pure domain types for catalog disambiguation and metadata scoring.

Adapters translate provider payloads into these candidates so that scoring
stays identical across services.
"""

from typing import Any

from attrs import define, field


@define(frozen=True, slots=True)
class CatalogCandidate:
    """One catalog entry returned for an exact ISRC or UPC lookup."""

    provider_track_id: str
    name: str
    artists: list[str] = field(factory=list)
    artist_ids: list[str] = field(factory=list)
    album_name: str | None = None
    album_artists: list[str] = field(factory=list)
    album_artist_ids: list[str] = field(factory=list)
    album_type: str | None = None  # "album", "single", "compilation"
    is_compilation: bool = False
    release_date: str | None = None  # "YYYY", "YYYY-MM" or "YYYY-MM-DD"
    isrc: str | None = None
    duration_ms: int | None = None
    position: int = 0  # order returned by the provider, final tie-breaker


@define(frozen=True, slots=True)
class MetadataCandidate:
    """One text-search result considered by the metadata fallback."""

    provider_track_id: str
    name: str
    artists: list[str] = field(factory=list)
    album: str | None = None
    duration_ms: int | None = None
    isrc: str | None = None


@define(frozen=True, slots=True)
class CatalogScore:
    """Breakdown of a catalog candidate's disambiguation score."""

    base_score: float
    same_artist: bool = False
    album_bonus: float = 0.0
    compilation_penalty: float = 0.0
    various_artists_penalty: float = 0.0
    variant_penalty: float = 0.0
    release_bonus: float = 0.0
    final_score: float = 0.0


@define(frozen=True, slots=True)
class MetadataScore:
    """Breakdown of a metadata candidate's weighted score."""

    title_overlap: float = 0.0
    artist_overlap: float = 0.0
    duration_factor: float = 0.0
    duration_diff_ms: int | None = None
    variant_penalty: float = 0.0
    duration_penalty: float = 0.0
    isrc_bonus: float = 0.0
    final_score: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "title_overlap": round(self.title_overlap, 3),
            "artist_overlap": round(self.artist_overlap, 3),
            "duration_factor": round(self.duration_factor, 3),
            "duration_diff_ms": self.duration_diff_ms,
            "variant_penalty": self.variant_penalty,
            "duration_penalty": self.duration_penalty,
            "isrc_bonus": self.isrc_bonus,
            "final_score": round(self.final_score, 3),
        }
