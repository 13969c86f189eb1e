"""Application layer - transfer use cases and services."""
