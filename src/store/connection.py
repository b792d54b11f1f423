# src/store/connection.py - v1
"""Driver lifecycle, edition probe and session helpers.

The ConnectionManager owns the neo4j async driver. Subsystems borrow it and
obtain per-operation sessions through execute() / run_auto(); they never
keep a session across operations. Mode flags live in an immutable
ModeState that is swapped under a lock, so each operation reads one
consistent snapshot at entry.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, TypeVar

from kgbridge.core.errors import (
    ConnectError,
    GraphStoreError,
    NotConnectedError,
    OperationTimeoutError,
    translate_error,
)
from kgbridge.core.models import StoreConfig
from kgbridge.store.scope import (
    DEFAULT_DATABASE,
    SYSTEM_DATABASE,
    Scope,
    resolve_scope,
    validate_graph_name,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DriverFactory = Callable[..., Any]


@dataclass(frozen=True)
class ModeState:
    """Snapshot of the mode flags and probe result."""

    use_separate_database: bool = False
    is_enterprise_edition: bool = False
    graph_label_prefix: str = ""


async def fetch_all(tx: Any, query: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    """Run one statement inside a transaction and materialise its records."""
    result = await tx.run(query, params or {})
    return await result.data()


async def run_statements(tx: Any, statements: list[tuple[str, dict[str, Any]]]) -> int:
    """Run several statements in one transaction; returns the total record count."""
    written = 0
    for query, params in statements:
        written += len(await fetch_all(tx, query, params))
    return written


async def bounded(awaitable: Awaitable[T], timeout: float | None) -> T:
    """Apply an operation-scoped deadline.

    A caller-side deadline (an enclosing wait_for or timeout block) still
    applies, so the effective deadline is the earlier of the two.
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise OperationTimeoutError(f"operation exceeded its {timeout}s deadline") from exc


def _default_driver_factory(url: str, **kwargs: Any) -> Any:
    from neo4j import AsyncGraphDatabase

    return AsyncGraphDatabase.driver(url, **kwargs)


class ConnectionManager:
    """Owns the driver handle and the mode state."""

    def __init__(self, driver_factory: DriverFactory | None = None) -> None:
        self._driver_factory = driver_factory or _default_driver_factory
        self._driver: Any = None
        self._config: StoreConfig | None = None
        self._state = ModeState()
        self._lock = threading.Lock()

    # --- Lifecycle ---

    async def connect(self, config: StoreConfig | dict[str, Any]) -> None:
        """Create the driver, verify connectivity and probe the edition.

        Raises:
            ConnectError: Auth failure, unreachable server, protocol mismatch,
                or separate-database mode requested on a Community server.
        """
        if isinstance(config, dict):
            config = StoreConfig(**config)
        if not config.password:
            raise ConnectError("password is required")
        if self.is_connected():
            await self.disconnect()

        from neo4j import basic_auth

        try:
            driver = self._driver_factory(
                config.url,
                auth=basic_auth(config.username, config.password),
                max_connection_pool_size=config.max_connection_pool,
                connection_timeout=config.connection_timeout,
            )
        except Exception as exc:
            raise ConnectError(f"failed to create driver for {config.url}: {exc}") from exc

        try:
            await driver.verify_connectivity()
            enterprise = await self._probe_edition(driver)
        except Exception as exc:
            await driver.close()
            raise ConnectError(f"failed to connect to {config.url}: {exc}") from exc

        if config.use_separate_database and not enterprise:
            await driver.close()
            raise ConnectError(
                "separate-database mode requires Neo4j Enterprise Edition; "
                "the server reports Community Edition"
            )

        with self._lock:
            self._driver = driver
            self._config = config
            self._state = ModeState(
                use_separate_database=config.use_separate_database,
                is_enterprise_edition=enterprise,
                graph_label_prefix=config.graph_label_prefix,
            )
        logger.info(
            "Connected to %s (edition=%s, mode=%s)",
            config.url,
            "enterprise" if enterprise else "community",
            "separate_database" if config.use_separate_database else "label_based",
        )

    async def _probe_edition(self, driver: Any) -> bool:
        from neo4j.exceptions import ClientError

        try:
            async with driver.session() as session:
                result = await session.run(
                    "CALL dbms.components() YIELD edition RETURN edition"
                )
                records = await result.data()
        except ClientError as exc:
            logger.warning("Edition probe failed, assuming community edition: %s", exc)
            return False
        edition = str(records[0]["edition"]).lower() if records else ""
        return edition == "enterprise"

    async def disconnect(self) -> None:
        """Close the driver and reset all state."""
        with self._lock:
            driver = self._driver
            self._driver = None
            self._state = ModeState()
        if driver is not None:
            await driver.close()
            logger.info("Disconnected from graph database")

    def is_connected(self) -> bool:
        return self._driver is not None

    async def reconnect(self) -> None:
        """Reconnect with the configuration of the last successful connect()."""
        if self._config is None:
            raise ConnectError("reconnect() called before any successful connect()")
        await self.disconnect()
        await self.connect(self._config)

    # --- Mode mutators ---

    def set_use_separate_database(self, value: bool) -> None:
        with self._lock:
            self._state = replace(self._state, use_separate_database=value)

    def set_enterprise_edition(self, value: bool) -> None:
        with self._lock:
            self._state = replace(self._state, is_enterprise_edition=value)

    def set_graph_label_prefix(self, prefix: str) -> None:
        if "`" in prefix:
            raise ValueError("graph label prefix must not contain backticks")
        with self._lock:
            self._state = replace(self._state, graph_label_prefix=prefix)

    # --- Accessors ---

    @property
    def driver(self) -> Any:
        driver = self._driver
        if driver is None:
            raise NotConnectedError()
        return driver

    def snapshot(self) -> ModeState:
        """Consistent view of the mode flags; fails when disconnected."""
        with self._lock:
            if self._driver is None:
                raise NotConnectedError()
            return self._state

    def scope(self, graph: str) -> Scope:
        """Validate a graph name and resolve it against the current mode."""
        validate_graph_name(graph)
        state = self.snapshot()
        return resolve_scope(graph, state.use_separate_database, state.graph_label_prefix)

    # --- Session helpers ---

    async def execute(
        self,
        database: str,
        work: Callable[..., Awaitable[T]],
        *args: Any,
        write: bool = True,
        graph: str | None = None,
    ) -> T:
        """Run ``work(tx, *args)`` in a managed transaction on ``database``.

        The driver retries transient failures of managed transactions; the
        terminal outcome is translated into the kgbridge taxonomy.
        """
        driver = self.driver
        try:
            async with driver.session(database=database) as session:
                if write:
                    return await session.execute_write(work, *args)
                return await session.execute_read(work, *args)
        except GraphStoreError:
            raise
        except Exception as exc:
            raise translate_error(exc, graph) from exc

    async def read(
        self, database: str, query: str, params: dict[str, Any] | None = None,
        graph: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self.execute(database, fetch_all, query, params, write=False, graph=graph)

    async def write(
        self, database: str, query: str, params: dict[str, Any] | None = None,
        graph: str | None = None,
    ) -> list[dict[str, Any]]:
        return await self.execute(database, fetch_all, query, params, write=True, graph=graph)

    async def run_auto(
        self, database: str, query: str, params: dict[str, Any] | None = None,
        graph: str | None = None,
    ) -> list[dict[str, Any]]:
        """Auto-commit statement, for administration and DDL commands."""
        driver = self.driver
        try:
            async with driver.session(database=database) as session:
                result = await session.run(query, params or {})
                return await result.data()
        except GraphStoreError:
            raise
        except Exception as exc:
            raise translate_error(exc, graph) from exc

    async def system(self, query: str, params: dict[str, Any] | None = None,
                     graph: str | None = None) -> list[dict[str, Any]]:
        return await self.run_auto(SYSTEM_DATABASE, query, params, graph=graph)

    @property
    def default_database(self) -> str:
        return DEFAULT_DATABASE
