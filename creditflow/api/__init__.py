"""HTTP API for creditflow."""
