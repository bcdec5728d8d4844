"""
Pytest configuration and fixtures for layerflow tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
from typing import Generator

import pytest
from testcontainers.postgres import PostgresContainer

from doubles import InMemoryCatalogStore, InMemoryRunStore, StubWorker
from layerflow.catalog import CatalogService
from layerflow.config import Settings
from layerflow.warehouse import CatalogStore, DatabaseConnectionPool, RunStore, create_schema
from layerflow.warehouse.ddl import TABLES


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

def start_postgres_container() -> PostgresContainer:
    """Start the test PostgreSQL container, skipping when Docker is unavailable"""
    try:
        container = PostgresContainer(
            image="postgres:16.2-alpine",
            username="test_layerflow",
            password="test_password",
            dbname="test_layerflow",
        )
        container.start()
    except Exception as e:
        pytest.skip(f"PostgreSQL container unavailable: {e}")
    return container


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL container for integration tests

    Skips the dependent tests when Docker is not available.

    Yields:
        PostgresContainer instance
    """
    container = start_postgres_container()
    try:
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="session")
def db_pool(postgres_container) -> Generator[DatabaseConnectionPool, None, None]:
    """
    Open a connection pool on the test container and create the schema

    Yields:
        Open DatabaseConnectionPool
    """
    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_layerflow",
        user="test_layerflow",
        password="test_password",
        min_size=1,
        max_size=4,
    )
    pool.open()
    create_schema(pool)

    yield pool

    pool.close()


@pytest.fixture(scope="function")
def clean_db(db_pool) -> DatabaseConnectionPool:
    """
    Provide a clean database by truncating all tables before each test

    Returns:
        Open DatabaseConnectionPool on empty tables
    """
    with db_pool.transaction() as cur:
        cur.execute(f"TRUNCATE TABLE {', '.join(TABLES)} RESTART IDENTITY CASCADE")

    return db_pool


@pytest.fixture
def catalog_store(clean_db) -> CatalogStore:
    return CatalogStore(clean_db)


@pytest.fixture
def run_store(clean_db) -> RunStore:
    return RunStore(clean_db)


# =======================
# IN-MEMORY FIXTURES
# =======================

@pytest.fixture
def settings() -> Settings:
    """Settings for tests: short deadline, default sample limit"""
    return Settings(
        db_password="test_password",
        stage_deadline_seconds=30.0,
        default_warehouse_uri="file:///tmp/warehouse",
        log_format="text",
    )


@pytest.fixture
def memory_store() -> InMemoryCatalogStore:
    return InMemoryCatalogStore()


@pytest.fixture
def memory_run_store() -> InMemoryRunStore:
    return InMemoryRunStore()


@pytest.fixture
def stub_worker() -> StubWorker:
    return StubWorker()


@pytest.fixture
def service(memory_store, stub_worker, settings, memory_run_store) -> CatalogService:
    return CatalogService(memory_store, stub_worker, settings=settings, run_store=memory_run_store)
