"""HTTP transport for the snippet playground (FastAPI)."""
