"""End-to-end transfer: SQLite stores, scheduler, orchestrator and fake providers."""

import pytest

from tests.fixtures.providers import FakeProvider, isrc_match, make_track, metadata_match
from tunebridge.application.services import TransferJobService, TransferRequest
from tunebridge.application.use_cases import TransferPlaylistUseCase
from tunebridge.config.settings import MatchingConfig, SchedulerConfig
from tunebridge.domain.entities import JobStatus, ProviderCredential, SourcePlaylist
from tunebridge.domain.errors import UpstreamError
from tunebridge.infrastructure.scheduling import TransferScheduler

pytestmark = pytest.mark.integration

PROVIDERS = ["apple_music", "soundcloud", "spotify"]


@pytest.fixture
async def stored_credentials(credential_store):
    for provider in ("spotify", "apple_music"):
        await credential_store.save_credential(
            ProviderCredential(user_id="user-1", provider=provider, access_token="token")
        )
    return credential_store


@pytest.fixture
def providers():
    source = FakeProvider(
        provider="spotify",
        playlists={
            "road-trip": SourcePlaylist(
                id="road-trip",
                name="Road Trip",
                tracks=[
                    make_track(1, isrc="USAAA0000001"),
                    make_track(2),
                    make_track(3, isrc="USAAA0000003"),
                ],
            )
        },
    )
    target = FakeProvider(
        provider="apple_music",
        add_batch_size=2,
        by_isrc={"USAAA0000001": isrc_match("am-1", "USAAA0000001")},
        by_name={"Song 2": metadata_match("am-2", "Song 2")},
    )
    return {"spotify": source, "apple_music": target}


@pytest.fixture
def scheduler(job_store, stored_credentials, providers):
    use_case = TransferPlaylistUseCase(
        job_store,
        stored_credentials,
        provider_factory=lambda provider, credential: providers[provider],
        matching=MatchingConfig(),
    )
    return TransferScheduler(
        job_store,
        use_case,
        SchedulerConfig(
            concurrency=2,
            lease_renew_interval=5,
            retry_base_delay=0.0,
            retry_max_delay=0.0,
        ),
        worker_id="e2e-worker",
    )


async def _submit(job_store, **request) -> str:
    service = TransferJobService(job_store, PROVIDERS)
    [job_id] = await service.submit(
        "user-1",
        [
            TransferRequest(
                source_playlist_id="road-trip",
                source_provider="spotify",
                target_provider="apple_music",
                **request,
            )
        ],
    )
    return job_id


class TestTransferEndToEnd:
    async def test_queued_job_runs_to_completion(self, job_store, scheduler, providers):
        # Arrange
        job_id = await _submit(job_store, options={"target_name": "Road Trip (copy)"})

        # Act
        dispatched = await scheduler.run_once()

        # Assert
        job = await job_store.get(job_id)
        target = providers["apple_music"]
        assert dispatched == 1
        assert job.status == JobStatus.SUCCEEDED
        assert job.transferred_tracks == 2
        assert job.total_tracks == 3
        assert job.locked_by is None
        assert job.meta["phase"] == "complete"
        assert job.meta["summary"]["unmatched"] == 1
        assert job.meta["summary"]["target_playlist_name"] == "Road Trip (copy)"
        assert job.meta["unmatched"][0]["name"] == "Song 3"
        assert job.meta["unmatched"][0]["position"] == 2
        assert target.destination["created-1"] == ["am-1", "am-2"]

    async def test_polling_payload_after_completion(self, job_store, scheduler):
        job_id = await _submit(job_store)
        await scheduler.run_once()

        status = await TransferJobService(job_store, PROVIDERS).status(job_id)

        payload = status.as_dict()
        assert payload["status"] == "succeeded"
        assert payload["progress"] == {
            "transferredTracks": 2,
            "totalTracks": 3,
            "phase": "complete",
        }
        assert payload["lastError"] is None

    async def test_transient_failure_requeued_then_succeeds(
        self, job_store, scheduler, providers
    ):
        source = providers["spotify"]
        source.errors["get_playlist"] = UpstreamError(
            "Spotify unavailable", provider="spotify", status_code=503
        )
        job_id = await _submit(job_store)

        await scheduler.run_once()
        failed_once = await job_store.get(job_id)
        source.errors.clear()
        await scheduler.run_once()

        job = await job_store.get(job_id)
        assert failed_once.status == JobStatus.QUEUED
        assert failed_once.meta["phase"] == "error"
        assert failed_once.meta["error"]["status_code"] == 503
        assert job.status == JobStatus.SUCCEEDED
        assert job.attempts == 2
        assert job.meta["error"] is None
