"""Command-line interface for ownly-headless."""
