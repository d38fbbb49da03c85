"""Command-line interface for creditflow."""
