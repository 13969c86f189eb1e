"""Job dispatch, lease renewal, retry and maintenance."""

from .scheduler import RetryDecision, RetryPolicy, TransferScheduler, default_worker_id

__all__ = ["RetryDecision", "RetryPolicy", "TransferScheduler", "default_worker_id"]
