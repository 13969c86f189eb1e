"""Provider adapters for streaming services and the provider registry."""

import importlib
import pkgutil
import sys

import httpx

from tunebridge.config import get_logger
from tunebridge.domain.entities import ProviderCredential
from tunebridge.domain.errors import AuthorizationError, ProviderNotSupportedError
from tunebridge.infrastructure.connectors.apple_music import AppleMusicConnector
from tunebridge.infrastructure.connectors.protocols import (
    ConnectorConfig,
    TransferProviderProtocol,
)
from tunebridge.infrastructure.connectors.soundcloud import SoundCloudConnector
from tunebridge.infrastructure.connectors.spotify import SpotifyConnector

logger = get_logger(__name__)

# Connector registry cache
_CONNECTORS: dict[str, ConnectorConfig] = {}


def discover_connectors() -> dict[str, ConnectorConfig]:
    """Discover and register connector configurations.

    Loads every module in this package that implements
    ``get_connector_config()`` and registers it under the provider id it
    declares, so new services plug in without factory code changes.

    Returns:
        dict[str, ConnectorConfig]: Provider ids mapped to their configurations
    """
    if _CONNECTORS:
        return _CONNECTORS

    module = sys.modules[__name__]
    for _, name, ispkg in pkgutil.iter_modules(
        module.__path__, prefix=f"{module.__name__}."
    ):
        if ispkg:
            continue
        connector_module = importlib.import_module(name)
        if hasattr(connector_module, "get_connector_config"):
            config = connector_module.get_connector_config()
            _CONNECTORS[config["provider"]] = config
            logger.debug(f"Registered connector: {config['provider']}")

    logger.debug(
        f"Discovered {len(_CONNECTORS)} connectors: {', '.join(sorted(_CONNECTORS))}"
    )
    return _CONNECTORS


def supported_providers() -> list[str]:
    """Provider ids that can be used as transfer source or destination."""
    return sorted(discover_connectors())


def create_transfer_provider(
    provider: str,
    credential: ProviderCredential | None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> TransferProviderProtocol:
    """Build the adapter for a provider id from the user's credential.

    Raises:
        ProviderNotSupportedError: No adapter is registered for the id
        AuthorizationError: The credential is missing or has no access token
    """
    config = discover_connectors().get(provider)
    if config is None:
        raise ProviderNotSupportedError(
            f"Provider '{provider}' is not supported",
            provider=provider,
            operation="create_transfer_provider",
        )
    if credential is None or not credential.access_token:
        raise AuthorizationError(
            f"No {provider} credential available for this user",
            provider=provider,
            operation="create_transfer_provider",
        )
    return config["factory"](credential, http_client)


__all__ = [
    "AppleMusicConnector",
    "ConnectorConfig",
    "SoundCloudConnector",
    "SpotifyConnector",
    "TransferProviderProtocol",
    "create_transfer_provider",
    "discover_connectors",
    "supported_providers",
]
