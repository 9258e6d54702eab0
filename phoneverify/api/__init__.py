"""HTTP API for the phone verification service."""
