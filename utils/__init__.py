"""Shared helpers: input validators and terminal rendering for the CLI."""
