"""Command line interface for y10k."""
