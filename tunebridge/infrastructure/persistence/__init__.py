"""Persistence layer: database handle, ORM models and repositories."""
