"""Repository type plugins for y10k."""
