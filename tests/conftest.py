"""
Shared fixtures: an in-memory SQLite database (aiosqlite) with all tables,
test settings with a low timeout floor, and primitive factories.
"""

from typing import Any
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from toolmount.core.tools.base import PrimitiveDefinition, PrimitiveSnapshot
from toolmount.core.tools.registry import MountCache
from toolmount.models.database import create_tables, get_sessionmaker
from toolmount.services.primitive_registry import PrimitiveRegistry
from toolmount.settings import ToolmountSettings, clear_settings_cache

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ECHO_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"message": {"type": "string", "description": "Text to echo"}},
    "required": ["message"],
}


def make_snapshot(**overrides: Any) -> PrimitiveSnapshot:
    """Build a PrimitiveSnapshot without touching the database."""
    data: dict[str, Any] = {
        "id": uuid4(),
        "name": "echo",
        "description": "Return the input unchanged",
        "input_schema": ECHO_SCHEMA,
        "handler": "return input",
        "timeout_ms": 5_000,
    }
    data.update(overrides)
    return PrimitiveSnapshot(**data)


def make_definition(**overrides: Any) -> PrimitiveDefinition:
    data: dict[str, Any] = {
        "name": "echo",
        "description": "Return the input unchanged",
        "input_schema": ECHO_SCHEMA,
        "handler": "return input",
        "category": "utility",
        "tags": ["debug"],
    }
    data.update(overrides)
    return PrimitiveDefinition(**data)


@pytest.fixture(autouse=True)
def _fresh_settings_cache():
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings() -> ToolmountSettings:
    return ToolmountSettings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        min_timeout_ms=10,
        default_timeout_ms=5_000,
        seed_builtins=False,
    )


@pytest.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessionmaker(engine):
    return get_sessionmaker(engine)


@pytest.fixture
def cache() -> MountCache:
    return MountCache()


@pytest.fixture
def registry(sessionmaker, cache, settings) -> PrimitiveRegistry:
    return PrimitiveRegistry(sessionmaker, cache, settings=settings)


@pytest.fixture
def snapshot_factory():
    return make_snapshot


@pytest.fixture
def definition_factory():
    return make_definition
