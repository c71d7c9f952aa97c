"""Command-line interface for ABAP Bridge."""
