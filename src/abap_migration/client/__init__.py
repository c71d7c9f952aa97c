"""Clients for remote ABAP systems and text-generation services."""
