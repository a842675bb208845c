"""Settings and logging primitives shared across the API."""
