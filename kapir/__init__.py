"""Service layer for a shared-cab dispatch API: models, distances, KPIs, route logic and database operations."""

__version__ = "0.1.0"
__all__ = ["model", "distance", "stats", "routing", "service"]