"""HTTP surface of the rewards service."""
