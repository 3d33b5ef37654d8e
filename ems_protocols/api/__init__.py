"""HTTP API for the protocol service."""
