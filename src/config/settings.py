# src/config/settings.py - v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for deployment-specific settings. The store itself
never reads the environment: Settings.to_store_config() hands the
connection options to Store.connect().
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kgbridge.core.models import StoreConfig


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Graph database ===
    graph_db_uri: str = "bolt://localhost:7687"
    graph_db_user: str = "neo4j"
    graph_db_password: str = ""
    graph_db_use_separate_database: bool = False
    graph_db_max_connection_pool: int = 100
    graph_db_connection_timeout: float = 30.0
    graph_db_label_prefix: str = ""

    # === Write / read defaults ===
    graph_db_batch_size: int = 100
    graph_db_query_limit: int = 1000

    # === Community detection ===
    community_detection_algorithm: Literal["leiden", "louvain", "label_propagation"] = "leiden"
    community_detection_resolution: float = 1.0
    community_detection_seed: int | None = 42
    community_min_size: int = 1

    # === Backup ===
    backup_default_format: Literal["json", "cypher"] = "json"
    backup_compress: bool = False

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("graph_db_batch_size", "graph_db_query_limit", "graph_db_max_connection_pool")
    @classmethod
    def validate_positive(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("graph_db_label_prefix")
    @classmethod
    def validate_label_prefix(cls, v: str) -> str:  # noqa: N805
        if "`" in v:
            raise ValueError("graph_db_label_prefix must not contain backticks")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if not self.graph_db_uri.strip():
            errors.append("GRAPH_DB_URI must not be empty")

        if self.graph_db_connection_timeout <= 0:
            errors.append("GRAPH_DB_CONNECTION_TIMEOUT must be > 0")

        if self.community_detection_resolution <= 0:
            errors.append("COMMUNITY_DETECTION_RESOLUTION must be > 0")

        if self.community_min_size < 1:
            errors.append("COMMUNITY_MIN_SIZE must be >= 1")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    def to_store_config(self) -> StoreConfig:
        """Connection options for Store.connect()."""
        return StoreConfig(
            url=self.graph_db_uri,
            username=self.graph_db_user,
            password=self.graph_db_password,
            use_separate_database=self.graph_db_use_separate_database,
            max_connection_pool=self.graph_db_max_connection_pool,
            connection_timeout=self.graph_db_connection_timeout,
            graph_label_prefix=self.graph_db_label_prefix,
        )


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or embedding).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
