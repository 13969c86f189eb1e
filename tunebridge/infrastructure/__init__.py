"""Infrastructure layer - provider adapters, persistence, scheduling and CLI."""
