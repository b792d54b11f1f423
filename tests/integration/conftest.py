# tests/integration/conftest.py - v1
"""Shared fixtures for integration tests using testcontainers.

Container lifecycle:
- session scope: one Neo4j container per pytest session
- function scope: a fresh connected Store and a unique graph name per test

Uses DockerContainer directly with the bridge network IP and the internal
Bolt port, so the tests also run inside a devcontainer with
docker-outside-of-docker (localhost:mapped_port is unreachable there).
"""

from __future__ import annotations

import logging
import time
import uuid

import pytest
import pytest_asyncio

from kgbridge import Store

logger = logging.getLogger(__name__)

NEO4J_IMAGE = "neo4j:5"
NEO4J_BOLT_PORT = 7687
NEO4J_PASSWORD = "testpassword"


def pytest_configure(config):
    config.addinivalue_line("markers", "neo4j: marks tests requiring Neo4j container")


# =====================================================================
#  DEVCONTAINER NETWORKING HELPERS
# =====================================================================

def _get_container_bridge_ip(container, max_attempts: int = 10) -> str:
    """Get container bridge network IP with retries."""
    for attempt in range(max_attempts):
        try:
            wrapped = container.get_wrapped_container()
            wrapped.reload()
            networks = wrapped.attrs.get("NetworkSettings", {}).get("Networks", {})
            for net_name, net_info in networks.items():
                ip = net_info.get("IPAddress", "")
                if ip:
                    logger.info(
                        "Container %s IP: %s (network: %s, attempt %d)",
                        wrapped.short_id, ip, net_name, attempt + 1,
                    )
                    return ip
        except Exception as e:
            logger.debug("Error getting IP (attempt %d): %s", attempt + 1, e)
        time.sleep(0.5)

    raise RuntimeError(
        f"Could not obtain container bridge IP after {max_attempts} attempts"
    )


def _docker_available() -> bool:
    """Check if Docker daemon is reachable."""
    try:
        import docker
        client = docker.from_env()
        client.ping()
        return True
    except Exception:
        return False


skip_no_docker = pytest.mark.skipif(
    not _docker_available(),
    reason="Docker daemon not available",
)


# =====================================================================
#  NEO4J CONTAINER - session scope (bridge IP)
# =====================================================================

@pytest.fixture(scope="session")
def neo4j_container():
    if not _docker_available():
        pytest.skip("Docker not available")

    from testcontainers.core.container import DockerContainer
    from testcontainers.core.waiting_utils import wait_for_logs

    container = (
        DockerContainer(NEO4J_IMAGE)
        .with_exposed_ports(NEO4J_BOLT_PORT)
        .with_env("NEO4J_AUTH", f"neo4j/{NEO4J_PASSWORD}")
    )
    container.start()
    wait_for_logs(container, predicate=r"Started\.", timeout=120)
    time.sleep(2)

    ip = _get_container_bridge_ip(container)
    logger.info("Neo4j ready at %s:%d", ip, NEO4J_BOLT_PORT)
    yield {"url": f"bolt://{ip}:{NEO4J_BOLT_PORT}", "password": NEO4J_PASSWORD}
    container.stop()


@pytest.fixture
def neo4j_config(neo4j_container) -> dict:
    return {"url": neo4j_container["url"], "password": neo4j_container["password"]}


@pytest.fixture
def graph_name() -> str:
    """Unique graph name per test for isolation."""
    return f"test-{uuid.uuid4().hex[:8]}"


@pytest_asyncio.fixture
async def neo4j_store(neo4j_config, graph_name):
    store = Store(neo4j_config)
    await store.connect()
    yield store
    try:
        await store.drop_graph(graph_name)
    finally:
        await store.disconnect()
