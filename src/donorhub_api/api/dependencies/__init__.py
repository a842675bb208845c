"""FastAPI dependencies shared by the v1 endpoints."""
