"""Tests for the transfer orchestrator state machine with mocked persistence."""

from unittest.mock import AsyncMock

import pytest

from tests.fixtures.providers import FakeProvider, isrc_match, make_track
from tunebridge.application.use_cases import (
    TransferPlaylistCommand,
    TransferPlaylistUseCase,
)
from tunebridge.config.settings import MatchingConfig
from tunebridge.domain.entities import ProviderCredential, SourcePlaylist
from tunebridge.domain.errors import (
    AuthorizationError,
    InvalidTransferRequest,
    LockConflict,
    UpstreamError,
)
from tunebridge.infrastructure.connectors import create_transfer_provider


def _phases(store: AsyncMock) -> list[str]:
    return [
        call.kwargs["meta"]["phase"]
        for call in store.update_progress.call_args_list
        if "phase" in (call.kwargs.get("meta") or {})
    ]


@pytest.fixture
def store():
    return AsyncMock()


@pytest.fixture
def credentials():
    creds = AsyncMock()
    creds.get_credential.side_effect = lambda user_id, provider: ProviderCredential(
        user_id=user_id, provider=provider, access_token=f"{provider}-token"
    )
    return creds


@pytest.fixture
def source():
    tracks = [make_track(i, isrc=f"ISRC{i}") for i in range(3)]
    return FakeProvider(
        provider="spotify",
        playlists={
            "src-playlist": SourcePlaylist(
                id="src-playlist",
                name="Road Trip",
                description="Songs for the car",
                public=True,
                tracks=tracks,
            )
        },
    )


@pytest.fixture
def target():
    return FakeProvider(
        provider="apple_music",
        add_batch_size=2,
        by_isrc={f"ISRC{i}": isrc_match(f"am-{i}", f"ISRC{i}") for i in (0, 2, 1)},
    )


@pytest.fixture
def use_case(store, credentials, source, target):
    providers = {"spotify": source, "apple_music": target}
    return TransferPlaylistUseCase(
        store,
        credentials,
        provider_factory=lambda provider, credential: providers[provider],
        matching=MatchingConfig(),
    )


class TestSuccessfulTransfer:
    """Happy path through every phase."""

    async def test_walks_phases_in_order(self, use_case, store, make_job):
        await use_case.execute(TransferPlaylistCommand(make_job(), "worker-1"))

        assert _phases(store) == [
            "initializing",
            "fetching-source-playlist",
            "matching-tracks",
            "preparing-destination",
            "adding-tracks",
        ]
        store.mark_succeeded.assert_awaited_once()
        assert store.mark_succeeded.await_args.kwargs["meta"]["phase"] == "complete"

    async def test_writes_in_provider_batches_preserving_order(
        self, use_case, store, target, make_job
    ):
        outcome = await use_case.execute(TransferPlaylistCommand(make_job(), "worker-1"))

        assert target.add_calls == [["am-0", "am-1"], ["am-0", "am-1", "am-2"]]
        assert target.destination["created-1"] == ["am-0", "am-1", "am-2"]
        progress = [
            call.kwargs["transferred_tracks"]
            for call in store.update_progress.call_args_list
            if "transferred_tracks" in call.kwargs
        ]
        assert progress == [2, 3]
        assert outcome.transferred_tracks == 3
        assert outcome.total_tracks == 3

    async def test_repeated_source_track_written_each_time(
        self, store, credentials, target, make_job
    ):
        source = FakeProvider(
            provider="spotify",
            playlists={
                "src-playlist": SourcePlaylist(
                    id="src-playlist",
                    name="Road Trip",
                    tracks=[
                        make_track(0, isrc="ISRC0"),
                        make_track(1, isrc="ISRC1"),
                        make_track(0, isrc="ISRC0"),
                    ],
                )
            },
        )
        providers = {"spotify": source, "apple_music": target}
        use_case = TransferPlaylistUseCase(
            store,
            credentials,
            provider_factory=lambda provider, _: providers[provider],
            matching=MatchingConfig(),
        )

        outcome = await use_case.execute(TransferPlaylistCommand(make_job(), "worker-1"))

        assert target.destination["created-1"] == ["am-0", "am-1", "am-0"]
        assert outcome.transferred_tracks == 3
        assert outcome.summary["added"] == 3

    async def test_rerun_into_same_playlist_adds_nothing(self, use_case, target, make_job):
        job = make_job(target_playlist_id="existing", create_if_missing=False)
        await use_case.execute(TransferPlaylistCommand(job, "worker-1"))

        outcome = await use_case.execute(TransferPlaylistCommand(job, "worker-1"))

        assert target.destination["existing"] == ["am-0", "am-1", "am-2"]
        assert outcome.summary["added"] == 0

    async def test_new_playlist_copies_source_name(self, use_case, target, make_job):
        outcome = await use_case.execute(TransferPlaylistCommand(make_job(), "worker-1"))

        assert target.created == ["Road Trip"]
        assert outcome.summary["created"] is True
        assert outcome.summary["target_playlist_name"] == "Road Trip"

    async def test_existing_target_playlist_reused(self, use_case, target, make_job):
        job = make_job(target_playlist_id="existing", create_if_missing=False)

        outcome = await use_case.execute(TransferPlaylistCommand(job, "worker-1"))

        assert target.created == []
        assert target.destination["existing"] == ["am-0", "am-1", "am-2"]
        assert outcome.summary["created"] is False

    async def test_records_source_target_and_matching_meta(self, use_case, store, make_job):
        await use_case.execute(TransferPlaylistCommand(make_job(), "worker-1"))

        merged: dict = {}
        for call in store.update_progress.call_args_list:
            merged.update(call.kwargs.get("meta") or {})

        assert merged["source"] == {
            "provider": "spotify",
            "playlist_id": "src-playlist",
            "playlist_name": "Road Trip",
        }
        assert merged["total_tracks"] == 3
        assert merged["matching"]["matched"] == 3
        assert merged["unmatched"] == []
        assert merged["target"]["created"] is True
        assert merged["added"] == 3

    async def test_partial_match_transfers_subset(self, store, credentials, source, make_job):
        target = FakeProvider(by_isrc={"ISRC1": isrc_match("am-1", "ISRC1")})
        use_case = TransferPlaylistUseCase(
            store,
            credentials,
            provider_factory=lambda provider, _: source if provider == "spotify" else target,
            matching=MatchingConfig(),
        )

        outcome = await use_case.execute(TransferPlaylistCommand(make_job(), "worker-1"))

        assert outcome.transferred_tracks == 1
        assert outcome.summary["unmatched"] == 2

    async def test_adapters_closed(self, use_case, source, target, make_job):
        await use_case.execute(TransferPlaylistCommand(make_job(), "worker-1"))

        assert source.closed and target.closed


class TestFailedTransfer:
    """Failures are recorded on the job before being re-raised."""

    async def test_missing_target_without_create_is_invalid(self, use_case, store, make_job):
        job = make_job(create_if_missing=False)

        with pytest.raises(InvalidTransferRequest):
            await use_case.execute(TransferPlaylistCommand(job, "worker-1"))

        last_call = store.update_progress.call_args_list[-1]
        assert last_call.kwargs["meta"]["phase"] == "error"
        assert last_call.kwargs["meta"]["error"]["error_type"] == "InvalidTransferRequest"
        assert "create_if_missing" in last_call.kwargs["last_error"]
        store.mark_succeeded.assert_not_awaited()

    async def test_upstream_failure_recorded_and_reraised(
        self, use_case, store, source, target, make_job
    ):
        source.errors["get_playlist"] = UpstreamError(
            "Spotify unavailable", provider="spotify", status_code=503
        )

        with pytest.raises(UpstreamError):
            await use_case.execute(TransferPlaylistCommand(make_job(), "worker-1"))

        error_meta = store.update_progress.call_args_list[-1].kwargs["meta"]["error"]
        assert error_meta["status_code"] == 503
        assert error_meta["provider"] == "spotify"
        assert source.closed and target.closed

    async def test_missing_credential_is_authorization_error(self, store, make_job):
        credentials = AsyncMock()
        credentials.get_credential.return_value = None
        use_case = TransferPlaylistUseCase(
            store,
            credentials,
            provider_factory=create_transfer_provider,
            matching=MatchingConfig(),
        )

        with pytest.raises(AuthorizationError):
            await use_case.execute(TransferPlaylistCommand(make_job(), "worker-1"))

        assert _phases(store)[-1] == "error"

    async def test_lost_lease_leaves_record_untouched(self, use_case, store, make_job):
        store.update_progress.side_effect = LockConflict("lease lost")

        with pytest.raises(LockConflict):
            await use_case.execute(TransferPlaylistCommand(make_job(), "worker-1"))

        assert store.update_progress.await_count == 1
