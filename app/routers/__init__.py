"""API router package."""

from app.routers import elections, results, voting

__all__ = ["elections", "results", "voting"]
