"""Phone number verification service."""
