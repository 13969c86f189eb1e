"""Domain repository interfaces following Clean Architecture principles."""

from .interfaces import CredentialStoreProtocol, TransferJobStoreProtocol

__all__ = [
    "CredentialStoreProtocol",
    "TransferJobStoreProtocol",
]
