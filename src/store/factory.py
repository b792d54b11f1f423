# src/store/factory.py - v1
"""Factory: instantiate the graph store from configuration."""

from __future__ import annotations

import logging

from kgbridge.config.settings import Settings, load_settings
from kgbridge.store.connection import DriverFactory
from kgbridge.store.store import OperationDefaults, Store

logger = logging.getLogger(__name__)


def operation_defaults(settings: Settings) -> OperationDefaults:
    """Fallbacks for dict-form options, taken from settings."""
    return OperationDefaults(
        batch_size=settings.graph_db_batch_size,
        query_limit=settings.graph_db_query_limit,
        community_algorithm=settings.community_detection_algorithm,
        community_resolution=settings.community_detection_resolution,
        community_seed=settings.community_detection_seed,
        community_min_size=settings.community_min_size,
        backup_format=settings.backup_default_format,
        backup_compress=settings.backup_compress,
    )


def create_graph_store(
    settings: Settings | None = None,
    driver_factory: DriverFactory | None = None,
) -> Store:
    """Build an unconnected Store from settings.

    Args:
        settings: Application settings. Loaded from .env if None.
        driver_factory: Alternative driver constructor (tests).

    Returns:
        Store carrying the connection configuration; call ``connect()``.
    """
    settings = settings or load_settings()
    store = Store(
        config=settings.to_store_config(),
        driver_factory=driver_factory,
        defaults=operation_defaults(settings),
    )
    logger.debug(
        "Graph store created for %s (mode=%s)",
        settings.graph_db_uri,
        "separate_database" if settings.graph_db_use_separate_database else "label_based",
    )
    return store
