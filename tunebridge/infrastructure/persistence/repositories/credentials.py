"""Repository for per-user provider credentials."""

from sqlalchemy import select

from tunebridge.config import get_logger
from tunebridge.domain.entities import ProviderCredential
from tunebridge.infrastructure.persistence.database.db_connection import Database
from tunebridge.infrastructure.persistence.database.db_models import (
    DBProviderCredential,
)
from tunebridge.infrastructure.persistence.repositories.repo_decorator import (
    db_operation,
)

logger = get_logger(__name__).bind(service="credentials")


class SqlCredentialStore:
    """CredentialStoreProtocol implementation backed by provider_credentials."""

    def __init__(self, database: Database) -> None:
        self.database = database

    @db_operation("get_credential")
    async def get_credential(
        self, user_id: str, provider: str
    ) -> ProviderCredential | None:
        stmt = select(DBProviderCredential).where(
            DBProviderCredential.user_id == user_id,
            DBProviderCredential.provider == provider,
        )
        async with self.database.session() as session:
            row = (await session.scalars(stmt)).first()
            if row is None:
                return None
            return ProviderCredential(
                user_id=row.user_id,
                provider=row.provider,
                access_token=row.access_token,
                refresh_token=row.refresh_token,
                provider_account_id=row.provider_account_id,
            )

    @db_operation("save_credential")
    async def save_credential(self, credential: ProviderCredential) -> None:
        """Insert or replace the credential for (user_id, provider)."""
        stmt = select(DBProviderCredential).where(
            DBProviderCredential.user_id == credential.user_id,
            DBProviderCredential.provider == credential.provider,
        )
        async with self.database.session() as session:
            row = (await session.scalars(stmt)).first()
            if row is None:
                row = DBProviderCredential(
                    user_id=credential.user_id, provider=credential.provider
                )
                session.add(row)
            row.access_token = credential.access_token
            row.refresh_token = credential.refresh_token
            row.provider_account_id = credential.provider_account_id

        logger.info(
            "Stored provider credential",
            user_id=credential.user_id,
            provider=credential.provider,
        )
