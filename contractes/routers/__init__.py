"""Routers package for API endpoints."""

from contractes.routers import companies, names, organizations, persons

__all__ = ["companies", "names", "organizations", "persons"]
