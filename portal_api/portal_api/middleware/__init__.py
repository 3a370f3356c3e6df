"""Starlette middleware and FastAPI guards for the portal API."""
