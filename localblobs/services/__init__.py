"""LocalBlobs services."""
