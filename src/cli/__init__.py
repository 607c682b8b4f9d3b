"""Command-line interface for the session market."""
