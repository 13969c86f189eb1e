"""Track matching algorithms and types for cross-catalog identification."""

from .algorithms import (
    DEFAULT_MATCHING_CONFIG,
    artist_overlap,
    build_search_query,
    is_variant_title,
    normalize_artist,
    normalize_title,
    parse_release_date,
    rank_catalog_candidates,
    score_catalog_candidate,
    score_metadata_candidate,
    select_catalog_candidate,
    select_metadata_candidate,
    title_similarity,
    token_overlap,
    tokenize,
)
from .types import CatalogCandidate, CatalogScore, MetadataCandidate, MetadataScore

__all__ = [
    "DEFAULT_MATCHING_CONFIG",
    "CatalogCandidate",
    "CatalogScore",
    "MetadataCandidate",
    "MetadataScore",
    "artist_overlap",
    "build_search_query",
    "is_variant_title",
    "normalize_artist",
    "normalize_title",
    "parse_release_date",
    "rank_catalog_candidates",
    "score_catalog_candidate",
    "score_metadata_candidate",
    "select_catalog_candidate",
    "select_metadata_candidate",
    "title_similarity",
    "token_overlap",
    "tokenize",
]
