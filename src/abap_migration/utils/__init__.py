"""Shared utilities: structured logging and retry helpers."""
