"""Shared fixtures: a file-backed SQLite database per test and job builders."""

import pytest

from tunebridge.domain.entities import TransferJob, TransferSource, TransferTarget
from tunebridge.infrastructure.persistence.database import Database
from tunebridge.infrastructure.persistence.repositories import (
    SqlCredentialStore,
    SqlTransferJobStore,
)


@pytest.fixture
async def database(tmp_path):
    """Fresh SQLite database with the schema created."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'tunebridge-test.db'}")
    await db.init_schema()
    yield db
    await db.dispose()


@pytest.fixture
def job_store(database):
    return SqlTransferJobStore(database)


@pytest.fixture
def credential_store(database):
    return SqlCredentialStore(database)


@pytest.fixture
def make_job():
    """Factory for transfer jobs between two providers."""

    def _make_job(
        source_provider: str = "spotify",
        target_provider: str = "apple_music",
        *,
        user_id: str = "user-1",
        source_playlist_id: str = "src-playlist",
        target_playlist_id: str | None = None,
        create_if_missing: bool = True,
        **kwargs,
    ) -> TransferJob:
        return TransferJob(
            user_id=user_id,
            source=TransferSource(
                provider=source_provider, playlist_id=source_playlist_id
            ),
            target=TransferTarget(
                provider=target_provider,
                playlist_id=target_playlist_id,
                create_if_missing=create_if_missing,
            ),
            **kwargs,
        )

    return _make_job
