"""Tests for connector discovery and the provider factory."""

import httpx
import pytest

from tunebridge.domain.entities import ProviderCredential
from tunebridge.domain.errors import AuthorizationError, ProviderNotSupportedError
from tunebridge.infrastructure.connectors import (
    SoundCloudConnector,
    SpotifyConnector,
    TransferProviderProtocol,
    create_transfer_provider,
    discover_connectors,
    supported_providers,
)


def test_all_providers_discovered():
    assert supported_providers() == ["apple_music", "soundcloud", "spotify"]
    assert all("factory" in config for config in discover_connectors().values())


def test_unknown_provider_rejected():
    credential = ProviderCredential(user_id="u", provider="tidal", access_token="t")

    with pytest.raises(ProviderNotSupportedError, match="tidal"):
        create_transfer_provider("tidal", credential)


@pytest.mark.parametrize("credential", [None, ProviderCredential(user_id="u", provider="spotify", access_token="")])
def test_missing_credential_rejected(credential):
    with pytest.raises(AuthorizationError):
        create_transfer_provider("spotify", credential)


def test_factory_builds_spotify_adapter():
    credential = ProviderCredential(user_id="u", provider="spotify", access_token="t")

    connector = create_transfer_provider("spotify", credential)

    assert isinstance(connector, SpotifyConnector)
    assert isinstance(connector, TransferProviderProtocol)


async def test_factory_passes_shared_http_client():
    credential = ProviderCredential(user_id="u", provider="soundcloud", access_token="t")
    async with httpx.AsyncClient() as client:
        connector = create_transfer_provider("soundcloud", credential, http_client=client)

        assert isinstance(connector, SoundCloudConnector)
        assert connector.http_client is client
