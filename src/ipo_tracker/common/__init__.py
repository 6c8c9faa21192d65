"""Shared helpers: logging, date codec, market and quota rules."""
