"""Pure algorithms for cross-catalog track matching.

These functions contain no I/O and implement the business rules for:
- normalizing and tokenizing titles and artist names
- choosing between several catalog entries that share an ISRC/UPC
- scoring free-text search results against a source track

All thresholds and weights come from MatchingConfig so they can be tuned
through the environment without a new build.
"""

from datetime import date
import re
import unicodedata

from rapidfuzz import fuzz

from tunebridge.config.settings import MatchingConfig

from .types import CatalogCandidate, CatalogScore, MetadataCandidate, MetadataScore

DEFAULT_MATCHING_CONFIG = MatchingConfig()

_BRACKETED = re.compile(r"\([^)]*\)|\[[^\]]*\]|\{[^}]*\}")
_DASH_SUFFIX = re.compile(r"\s+[-–—]\s+(.*)$")
_FEATURING = re.compile(r"\b(?:feat\.?|ft\.?|featuring)\s+.*$")
_VARIANT_MARKERS = re.compile(
    r"\b(?:remix(?:ed)?|rmx|live|cover|karaoke|tribute|instrumental|sped up|slowed)\b"
)
_TOKEN = re.compile(r"[a-z0-9]+")
_VARIOUS_ARTISTS = {"various artists", "various", "va", "multi interpretes"}
_RELEASE_DATE = re.compile(r"^(\d{4})(?:-(\d{2}))?(?:-(\d{2}))?")


def _fold(text: str) -> str:
    """Lowercase and strip accents."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_title(title: str) -> str:
    """Reduce a title to its core words.

    Removes parenthetical/bracketed annotations, "- Remastered 2011" style
    suffixes and featured-artist credits.

    >>> normalize_title("Song Name (feat. Someone) - Remastered 2011")
    'song name'
    """
    folded = _fold(title or "")
    folded = _BRACKETED.sub(" ", folded)
    folded = _DASH_SUFFIX.sub("", folded)
    folded = _FEATURING.sub("", folded)
    return " ".join(_TOKEN.findall(folded))


def normalize_artist(name: str) -> str:
    return " ".join(_TOKEN.findall(_fold(name or "")))


def tokenize(text: str) -> set[str]:
    return set(_TOKEN.findall(_fold(text or "")))


def is_variant_title(title: str) -> bool:
    """Detect remix/live/cover style versions.

    Only annotations (bracketed text or a dash suffix) are inspected, so a
    song literally called "Live and Let Die" is not treated as a live take.
    "remix" is recognized anywhere in the title.
    """
    folded = _fold(title or "")
    annotations = " ".join(_BRACKETED.findall(folded))
    suffix = _DASH_SUFFIX.search(folded)
    if suffix:
        annotations += " " + suffix.group(1)
    if _VARIANT_MARKERS.search(annotations):
        return True
    return "remix" in folded


def token_overlap(left: set[str], right: set[str]) -> float:
    """Shared tokens relative to the larger set (0.0-1.0)."""
    if not left or not right:
        return 0.0
    return len(left & right) / max(len(left), len(right))


def title_similarity(left: str, right: str) -> float:
    """Fuzzy similarity of two normalized titles (0.0-1.0)."""
    a, b = normalize_title(left), normalize_title(right)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return fuzz.token_set_ratio(a, b) / 100.0


def artist_overlap(target_artists: list[str], candidate_artists: list[str]) -> float:
    """How well the primary target artist is represented in the candidate.

    Combines token containment (handles "A & B" joined credits) with a fuzzy
    ratio (handles "The Beatles" vs "Beatles").
    """
    if not target_artists or not candidate_artists:
        return 0.0

    primary = target_artists[0]
    primary_tokens = tokenize(primary)
    candidate_tokens = tokenize(" ".join(candidate_artists))
    containment = (
        len(primary_tokens & candidate_tokens) / len(primary_tokens)
        if primary_tokens
        else 0.0
    )

    normalized_primary = normalize_artist(primary)
    fuzzy = max(
        fuzz.token_sort_ratio(normalized_primary, normalize_artist(artist)) / 100.0
        for artist in candidate_artists
    )
    return max(containment, fuzzy)


def parse_release_date(value: str | None) -> date | None:
    """Parse provider release dates of year, month or day precision."""
    if not value:
        return None
    match = _RELEASE_DATE.match(str(value))
    if not match:
        return None
    year, month, day = match.groups()
    try:
        return date(int(year), int(month or 1), int(day or 1))
    except ValueError:
        return None


# -------------------------------------------------------------------------
# CATALOG DISAMBIGUATION (ISRC / UPC)
# -------------------------------------------------------------------------


def _is_same_artist_album(candidate: CatalogCandidate) -> bool:
    if candidate.artist_ids and candidate.album_artist_ids:
        return bool(set(candidate.artist_ids) & set(candidate.album_artist_ids))

    track_artists = {normalize_artist(a) for a in candidate.artists if a}
    album_artists = {normalize_artist(a) for a in candidate.album_artists if a}
    album_artists -= _VARIOUS_ARTISTS
    track_artists.discard("")
    album_artists.discard("")
    if not track_artists or not album_artists:
        return False
    return any(
        album_artist == track_artist
        or track_artist in album_artist
        or album_artist in track_artist
        for album_artist in album_artists
        for track_artist in track_artists
    )


def _is_various_artists(candidate: CatalogCandidate) -> bool:
    return any(normalize_artist(a) in _VARIOUS_ARTISTS for a in candidate.album_artists)


def score_catalog_candidate(
    candidate: CatalogCandidate,
    config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
) -> CatalogScore:
    """Score a single catalog candidate, without the release-date bonus.

    The release bonus depends on the other candidates, so it is applied in
    select_catalog_candidate.
    """
    same_artist = _is_same_artist_album(candidate)
    album_type = (candidate.album_type or "").lower()
    is_compilation = candidate.is_compilation or album_type == "compilation"

    album_bonus = config.catalog_album_bonus if album_type in ("album", "single") else 0.0
    compilation_penalty = config.catalog_compilation_penalty if is_compilation else 0.0
    various_penalty = (
        config.catalog_various_artists_penalty if _is_various_artists(candidate) else 0.0
    )
    variant_penalty = (
        config.catalog_variant_penalty if is_variant_title(candidate.name) else 0.0
    )

    final = (
        config.catalog_base_score
        + (config.catalog_same_artist_bonus if same_artist else 0.0)
        + album_bonus
        - compilation_penalty
        - various_penalty
        - variant_penalty
    )
    return CatalogScore(
        base_score=config.catalog_base_score,
        same_artist=same_artist,
        album_bonus=album_bonus,
        compilation_penalty=compilation_penalty,
        various_artists_penalty=various_penalty,
        variant_penalty=variant_penalty,
        final_score=final,
    )


def rank_catalog_candidates(
    candidates: list[CatalogCandidate],
    config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
) -> list[tuple[CatalogCandidate, CatalogScore]]:
    """Rank candidates best-first with a deterministic order.

    Ties on score are broken by earlier release date, then provider order.
    """
    if not candidates:
        return []

    dates = [parse_release_date(c.release_date) for c in candidates]
    known_dates = [d for d in dates if d is not None]
    earliest = min(known_dates) if known_dates else None

    scored: list[tuple[CatalogCandidate, CatalogScore, date]] = []
    for candidate, released in zip(candidates, dates, strict=True):
        score = score_catalog_candidate(candidate, config)
        if earliest is not None and released == earliest and len(known_dates) > 1:
            score = CatalogScore(
                base_score=score.base_score,
                same_artist=score.same_artist,
                album_bonus=score.album_bonus,
                compilation_penalty=score.compilation_penalty,
                various_artists_penalty=score.various_artists_penalty,
                variant_penalty=score.variant_penalty,
                release_bonus=config.catalog_earliest_release_bonus,
                final_score=score.final_score + config.catalog_earliest_release_bonus,
            )
        scored.append((candidate, score, released or date.max))

    scored.sort(key=lambda item: (-item[1].final_score, item[2], item[0].position))
    return [(candidate, score) for candidate, score, _ in scored]


def select_catalog_candidate(
    candidates: list[CatalogCandidate],
    config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
) -> tuple[CatalogCandidate, CatalogScore] | None:
    """Pick the best catalog entry, or None when nothing clears the bar."""
    ranked = rank_catalog_candidates(candidates, config)
    if not ranked:
        return None
    best, score = ranked[0]
    if score.final_score < config.catalog_min_score:
        return None
    return best, score


# -------------------------------------------------------------------------
# METADATA FALLBACK
# -------------------------------------------------------------------------


def _duration_factor(
    target_ms: int | None,
    candidate_ms: int | None,
    config: MatchingConfig,
) -> tuple[float, int | None]:
    if not target_ms or not candidate_ms:
        return 0.5, None  # unknown duration is neutral

    diff = abs(target_ms - candidate_ms)
    if diff <= config.duration_tolerance_ms:
        return 1.0, diff
    if diff >= config.duration_max_diff_ms:
        return 0.0, diff
    span = config.duration_max_diff_ms - config.duration_tolerance_ms
    return 1.0 - (diff - config.duration_tolerance_ms) / span, diff


def score_metadata_candidate(
    name: str,
    artists: list[str],
    duration_ms: int | None,
    candidate: MetadataCandidate,
    isrc: str | None = None,
    config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
) -> MetadataScore:
    """Weighted score of a search result against the source track."""
    title_score = token_overlap(
        tokenize(normalize_title(name)), tokenize(normalize_title(candidate.name))
    )
    artist_score = artist_overlap(artists, candidate.artists)
    duration_score, diff = _duration_factor(duration_ms, candidate.duration_ms, config)

    variant_penalty = (
        config.metadata_variant_penalty
        if is_variant_title(candidate.name) and not is_variant_title(name)
        else 0.0
    )
    duration_penalty = (
        config.metadata_duration_mismatch_penalty
        if diff is not None and diff >= config.duration_max_diff_ms
        else 0.0
    )
    isrc_bonus = (
        config.metadata_isrc_bonus
        if isrc and candidate.isrc and candidate.isrc.strip().upper() == isrc.strip().upper()
        else 0.0
    )

    final = (
        config.metadata_title_weight * title_score
        + config.metadata_artist_weight * artist_score
        + config.metadata_duration_weight * duration_score
        - variant_penalty
        - duration_penalty
        + isrc_bonus
    )
    return MetadataScore(
        title_overlap=title_score,
        artist_overlap=artist_score,
        duration_factor=duration_score,
        duration_diff_ms=diff,
        variant_penalty=variant_penalty,
        duration_penalty=duration_penalty,
        isrc_bonus=isrc_bonus,
        final_score=final,
    )


def select_metadata_candidate(
    name: str,
    artists: list[str],
    duration_ms: int | None,
    candidates: list[MetadataCandidate],
    isrc: str | None = None,
    config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
) -> tuple[MetadataCandidate, MetadataScore] | None:
    """Best-scoring search result above the acceptance threshold.

    Earlier results win ties, keeping the provider's relevance order.
    """
    best: tuple[MetadataCandidate, MetadataScore] | None = None
    for candidate in candidates:
        score = score_metadata_candidate(
            name, artists, duration_ms, candidate, isrc=isrc, config=config
        )
        if best is None or score.final_score > best[1].final_score:
            best = (candidate, score)

    if best is None or best[1].final_score < config.metadata_min_score:
        return None
    return best


def build_search_query(name: str, artists: list[str]) -> str:
    """Plain-text search query from the cleaned title and primary artist."""
    title = normalize_title(name) or (name or "").strip()
    primary = artists[0].strip() if artists else ""
    return f"{title} {primary}".strip()
