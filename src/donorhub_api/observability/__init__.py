"""Observability helpers: tracing and in-process metrics stores."""
