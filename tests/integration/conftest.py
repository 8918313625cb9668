"""Integration conftest: session-scoped Neo4j testcontainer.

One Neo4j Community container is shared across the integration suite;
each test starts from an empty database via an autouse fixture.
"""

from __future__ import annotations

import asyncio
import logging
import time

import pytest
from neo4j import AsyncGraphDatabase
from testcontainers.core.container import DockerContainer

logger = logging.getLogger(__name__)


@pytest.fixture(scope="session")
def neo4j_container():
    """Spin up a Neo4j Community container and yield its bolt URI.

    Session-scoped: one container for the entire test run.
    """
    container = (
        DockerContainer("neo4j:community")
        .with_exposed_ports(7687)
        .with_env("NEO4J_AUTH", "none")
    )
    with container as c:
        host = c.get_container_host_ip()
        port = c.get_exposed_port(7687)
        uri = f"bolt://{host}:{port}"

        async def wait_for_neo4j():
            driver = AsyncGraphDatabase.driver(uri)
            max_attempts = 30
            for attempt in range(max_attempts):
                try:
                    await driver.verify_connectivity()
                    await driver.close()
                    return
                except Exception as exc:
                    if attempt == max_attempts - 1:
                        await driver.close()
                        raise
                    logger.debug(
                        "Neo4j not ready (attempt %d/%d): %s",
                        attempt + 1,
                        max_attempts,
                        exc,
                    )
                    time.sleep(1)

        asyncio.run(wait_for_neo4j())
        yield uri


@pytest.fixture()
async def neo4j_driver(neo4j_container):
    """Yield an async Neo4j driver connected to the test container."""
    driver = AsyncGraphDatabase.driver(neo4j_container)
    yield driver
    await driver.close()


@pytest.fixture(autouse=True)
async def clean_neo4j(neo4j_driver):
    """Wipe all nodes and relationships before each test."""
    async with neo4j_driver.session() as session:
        await session.run("MATCH (n) DETACH DELETE n")
    yield


@pytest.fixture(scope="session")
def _graph_schema_initialized(neo4j_container):
    """Initialize the Neo4j schema once per session (indexes + constraints)."""
    from entigraph.storage.graph_store import init_schema

    async def _init():
        driver = AsyncGraphDatabase.driver(neo4j_container)
        await init_schema(driver)
        await driver.close()

    asyncio.run(_init())
    return True


@pytest.fixture()
async def neo4j_provider(neo4j_driver, _graph_schema_initialized):
    """Yield a Neo4jProvider connected to the test container."""
    from entigraph.storage.graph_store import Neo4jProvider

    return Neo4jProvider(neo4j_driver)
