"""Application services - reconciliation and job submission."""

from .track_reconciler import (
    ReconciliationResult,
    ReconciliationStats,
    TrackReconciler,
)
from .transfer_jobs import TransferJobService, TransferRequest

__all__ = [
    "ReconciliationResult",
    "ReconciliationStats",
    "TrackReconciler",
    "TransferJobService",
    "TransferRequest",
]
