"""HTTP API for the review scheduler."""
