"""
Repositories for the sweep feature.
"""

from .sweep_repository import (
    ServiceCatalogRepository,
    SweepRepository,
    SweepRepositoryError,
    service_catalog_repository,
    sweep_repository,
)

__all__ = [
    "ServiceCatalogRepository",
    "SweepRepository",
    "SweepRepositoryError",
    "service_catalog_repository",
    "sweep_repository",
]
