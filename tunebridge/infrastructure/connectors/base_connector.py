"""Base connector module providing shared functionality for provider adapters.

Key Components:
- HttpConnector: httpx-based request helper with auth headers, timeouts,
  error classification and exponential backoff
- new_track_ids: ordered additions that skip tracks already in the destination
- select_catalog_match / select_metadata_match: turn scored candidates into
  MatchResults so every adapter applies the same matching rules

These components keep provider modules focused on payload shapes while error
semantics (AuthorizationError, UpstreamError, MalformedDataError) stay uniform.
"""

from collections import Counter
from collections.abc import Iterable
from typing import Any, ClassVar

from attrs import define, field
import backoff
import httpx

from tunebridge.config import get_logger, settings
from tunebridge.config.settings import MatchingConfig
from tunebridge.domain.entities import MatchKey, MatchResult, ProviderCredential
from tunebridge.domain.errors import (
    AuthorizationError,
    MalformedDataError,
    TransferError,
    UpstreamError,
)
from tunebridge.domain.matching import (
    CatalogCandidate,
    MetadataCandidate,
    select_catalog_candidate,
    select_metadata_candidate,
)

logger = get_logger(__name__).bind(service="connectors")


def new_track_ids(existing: Iterable[str], track_ids: Iterable[str]) -> list[str]:
    """Ids to append, in order, skipping only copies already in the destination.

    Existing ids are counted as a multiset: an id present once in the
    destination absorbs one occurrence from ``track_ids``, so a re-run appends
    nothing while repeats within the source are kept.
    """
    present = Counter(str(track_id) for track_id in existing)
    additions = []
    for track_id in track_ids:
        track_id = str(track_id)
        if not track_id:
            continue
        if present[track_id] > 0:
            present[track_id] -= 1
            continue
        additions.append(track_id)
    return additions


def select_catalog_match(
    key: MatchKey,
    code: str,
    candidates: list[CatalogCandidate],
    config: MatchingConfig,
    provider: str,
) -> MatchResult | None:
    """Pick the winning catalog entry for an ISRC/UPC lookup."""
    selected = select_catalog_candidate(candidates, config)
    if selected is None:
        if candidates:
            logger.debug(
                f"No {key} candidate cleared the catalog threshold",
                provider=provider,
                code=code,
                candidates=len(candidates),
            )
        return None

    candidate, score = selected
    if len(candidates) > 1:
        logger.debug(
            f"Disambiguated {len(candidates)} catalog entries for {key} {code}",
            provider=provider,
            chosen=candidate.provider_track_id,
            score=score.final_score,
        )
    return MatchResult(
        provider_track_id=candidate.provider_track_id,
        key=key,
        key_value=code,
        name=candidate.name,
        artists=list(candidate.artists),
        isrc=candidate.isrc,
        score=score.final_score,
    )


def select_metadata_match(
    name: str,
    artists: list[str],
    duration_ms: int | None,
    candidates: list[MetadataCandidate],
    isrc: str | None,
    config: MatchingConfig,
) -> MatchResult | None:
    """Score text-search results and build a MatchResult for the best one."""
    selected = select_metadata_candidate(
        name, artists, duration_ms, candidates, isrc=isrc, config=config
    )
    if selected is None:
        return None

    candidate, score = selected
    logger.debug(
        "Selected metadata candidate",
        chosen=candidate.provider_track_id,
        candidates=len(candidates),
        **score.as_dict(),
    )
    return MatchResult(
        provider_track_id=candidate.provider_track_id,
        key="metadata",
        key_value=None,
        name=candidate.name,
        artists=list(candidate.artists),
        isrc=candidate.isrc,
        score=score.final_score,
    )


def _is_permanent(error: Exception) -> bool:
    """Backoff giveup predicate: only transient upstream failures are retried."""
    if isinstance(error, UpstreamError):
        return error.is_client_error
    return not (isinstance(error, TransferError) and error.retryable)


def require_access_token(credential: ProviderCredential | None, provider: str) -> str:
    """Return the credential's access token or fail with AuthorizationError."""
    if credential is None or not credential.access_token:
        raise AuthorizationError(
            f"No {provider} access token available",
            provider=provider,
            operation="authorize",
        )
    return credential.access_token


@define(slots=True)
class HttpConnector:
    """Shared httpx plumbing for REST-style provider APIs.

    Subclasses set ``provider`` and implement ``_headers``. An injected
    ``http_client`` is used as-is and never closed by the connector; otherwise
    a client is created lazily and closed by ``aclose``.

    Attributes:
        credential: Per-user provider credential
        http_client: Optional shared AsyncClient (tests use MockTransport)
        base_url: API root prepended to relative paths
        timeout: Per-request timeout in seconds
        retry_count: Retries after the first attempt for transient failures
        retry_base_delay: Backoff factor in seconds
        retry_max_delay: Upper bound for a single backoff wait
        matching: Matching thresholds and weights
    """

    provider: ClassVar[str] = ""

    credential: ProviderCredential
    http_client: httpx.AsyncClient | None = field(default=None, repr=False)
    base_url: str = ""
    timeout: float = field(factory=lambda: settings.api.request_timeout)
    retry_count: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    matching: MatchingConfig = field(factory=lambda: settings.matching)
    _owned_client: httpx.AsyncClient | None = field(default=None, init=False, repr=False)

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    def _client(self) -> httpx.AsyncClient:
        if self.http_client is not None:
            return self.http_client
        if self._owned_client is None:
            self._owned_client = httpx.AsyncClient(timeout=self.timeout)
        return self._owned_client

    async def aclose(self) -> None:
        if self._owned_client is not None:
            await self._owned_client.aclose()
            self._owned_client = None

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _on_backoff(self, details):
        """Log backoff event."""
        logger.bind(provider=self.provider).warning(
            f"Backing off {details['target'].__name__} (attempt {details['tries']})",
            retry_delay=f"{details['wait']:.2f}s",
        )

    def _on_giveup(self, details):
        """Log when we give up retrying."""
        exception = details.get("exception")
        logger.bind(provider=self.provider).error(
            f"All {details['tries']} attempts failed for {details['target'].__name__}",
            elapsed_time=f"{details['elapsed']:.2f}s",
            error=str(exception) if exception else "Unknown error",
            error_type=type(exception).__name__ if exception else "Unknown",
        )

    async def _send_once(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        allow_not_found: bool = False,
    ) -> Any:
        headers = self._headers()
        if json is not None:
            headers["Content-Type"] = "application/json"

        try:
            response = await self._client().request(
                method,
                self._url(path),
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise UpstreamError(
                f"{self.provider} request timed out",
                provider=self.provider,
                operation=operation,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(
                f"{self.provider} request failed: {e}",
                provider=self.provider,
                operation=operation,
            ) from e

        status = response.status_code
        if status in (401, 403):
            raise AuthorizationError(
                f"{self.provider} rejected the credential ({status})",
                provider=self.provider,
                operation=operation,
            )
        if status == 404 and allow_not_found:
            return None
        if status >= 400:
            raise UpstreamError(
                f"{self.provider} API error {status}",
                provider=self.provider,
                operation=operation,
                status_code=status,
                body=response.text[:500],
            )
        if status == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise MalformedDataError(
                f"{self.provider} returned invalid JSON",
                provider=self.provider,
                operation=operation,
            ) from e

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        allow_not_found: bool = False,
    ) -> Any:
        """Send one API request with retries on transient failures.

        Returns:
            Decoded JSON body, or None for empty responses and tolerated 404s

        Raises:
            AuthorizationError: 401/403 responses
            UpstreamError: Any other non-success response after retries
            MalformedDataError: Response body is not JSON
        """

        @backoff.on_exception(
            backoff.expo,
            TransferError,
            max_tries=self.retry_count + 1,
            factor=self.retry_base_delay,
            max_value=self.retry_max_delay,
            jitter=backoff.full_jitter,
            giveup=_is_permanent,
            on_backoff=self._on_backoff,
            on_giveup=self._on_giveup,
        )
        async def send_with_backoff() -> Any:
            return await self._send_once(
                method,
                path,
                operation=operation,
                params=params,
                json=json,
                allow_not_found=allow_not_found,
            )

        return await send_with_backoff()
