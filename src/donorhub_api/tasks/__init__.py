"""Synchronous entry points shared by Celery and command-line tooling."""
