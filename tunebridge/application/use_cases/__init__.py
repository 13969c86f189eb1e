"""Application use cases - orchestrate business operations."""

from .transfer_playlist import (
    JobProgressReporter,
    TransferOutcome,
    TransferPlaylistCommand,
    TransferPlaylistUseCase,
)

__all__ = [
    "JobProgressReporter",
    "TransferOutcome",
    "TransferPlaylistCommand",
    "TransferPlaylistUseCase",
]
