"""Persistence: engine, sessions, ORM models and the SRS repository."""
