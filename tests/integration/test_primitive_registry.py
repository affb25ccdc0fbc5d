"""
Integration tests for the registry store against SQLite.

Tests the full primitive lifecycle:
1. Create (validated, persisted, mounted)
2. Update (versioned, cache entry swapped)
3. Mount / dismount (idempotent)
4. Delete (history detached, not removed)
5. List / search / categories / stats
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from toolmount.core.tools.base import (
    ExecutionOutcome,
    ExecutionRecordCreate,
    PrimitiveTier,
    PrimitiveUpdate,
)
from toolmount.exceptions import ConflictError, ImmutableError, NotFoundError, ValidationError
from toolmount.models.primitive import Primitive
from toolmount.services.execution_history import (
    ExecutionHistoryRecorder,
    ExecutionHistoryService,
)

pytestmark = pytest.mark.integration


async def count_rows(sessionmaker) -> int:
    async with sessionmaker() as session:
        result = await session.execute(select(func.count(Primitive.id)))
        return result.scalar() or 0


# ============================================================================
# Create
# ============================================================================


class TestCreate:
    async def test_create_persists_and_mounts(self, registry, cache, definition_factory):
        primitive = await registry.create(definition_factory())

        assert primitive.name == "echo"
        assert primitive.version == 1
        assert primitive.enabled is True
        assert primitive.built_in is False
        assert primitive.timeout_ms == 5_000
        assert cache.get_by_name("echo").id == primitive.id

        stored = await registry.get(primitive.id)
        assert stored.tags == ["debug"]

    async def test_timeout_is_clamped(self, registry, definition_factory):
        low = await registry.create(definition_factory(name="low", timeout_ms=1))
        high = await registry.create(definition_factory(name="high", timeout_ms=10**9))

        assert low.timeout_ms == 10
        assert high.timeout_ms == 300_000

    async def test_duplicate_name(self, registry, sessionmaker, definition_factory):
        await registry.create(definition_factory())

        with pytest.raises(ConflictError):
            await registry.create(definition_factory(description="Another echo"))

        assert await count_rows(sessionmaker) == 1

    async def test_blocked_handler_is_not_persisted(
        self, registry, cache, sessionmaker, definition_factory
    ):
        with pytest.raises(ValidationError) as exc_info:
            await registry.create(definition_factory(handler="import os\nreturn os.listdir('/')"))

        assert exc_info.value.pattern == "import statement"
        assert await count_rows(sessionmaker) == 0
        assert len(cache) == 0

    async def test_malformed_schema_is_rejected(self, registry, sessionmaker, definition_factory):
        with pytest.raises(ValidationError):
            await registry.create(
                definition_factory(input_schema={"type": "object", "properties": ["message"]})
            )
        assert await count_rows(sessionmaker) == 0


# ============================================================================
# Update
# ============================================================================


class TestUpdate:
    async def test_update_bumps_version_and_replaces_cache(
        self, registry, cache, definition_factory
    ):
        created = await registry.create(definition_factory())
        cache.record_invocation(created.id)

        updated = await registry.update(
            "echo", PrimitiveUpdate(handler="return {'echo': input['message']}")
        )

        assert updated.version == 2
        mounted = cache.get(created.id)
        assert mounted.primitive.handler == "return {'echo': input['message']}"
        assert mounted.primitive.version == 2
        assert mounted.invocation_count == 1

    async def test_only_set_fields_change(self, registry, definition_factory):
        created = await registry.create(definition_factory())

        updated = await registry.update(created.id, PrimitiveUpdate(category="text"))

        assert updated.category == "text"
        assert updated.description == created.description
        assert updated.tags == created.tags

    async def test_explicit_null_clears_optional_field(self, registry, definition_factory):
        created = await registry.create(definition_factory())
        updated = await registry.update(created.id, PrimitiveUpdate(category=None))
        assert updated.category is None

    async def test_dismounted_update_stays_dismounted(self, registry, cache, definition_factory):
        created = await registry.create(definition_factory())
        await registry.dismount(created.id)

        await registry.update(created.id, PrimitiveUpdate(description="Changed"))

        assert cache.get(created.id) is None

    async def test_rename(self, registry, cache, definition_factory):
        created = await registry.create(definition_factory())

        await registry.update(created.id, PrimitiveUpdate(name="echo_v2"))

        assert cache.get_by_name("echo") is None
        assert cache.get_by_name("echo_v2").id == created.id

    async def test_rename_conflict(self, registry, definition_factory):
        await registry.create(definition_factory())
        other = await registry.create(definition_factory(name="other"))

        with pytest.raises(ConflictError):
            await registry.update(other.id, PrimitiveUpdate(name="echo"))

        assert (await registry.get(other.id)).version == 1

    async def test_blocked_handler_leaves_primitive_unchanged(self, registry, definition_factory):
        created = await registry.create(definition_factory())

        with pytest.raises(ValidationError):
            await registry.update(created.id, PrimitiveUpdate(handler="return eval('1')"))

        stored = await registry.get(created.id)
        assert stored.handler == "return input"
        assert stored.version == 1

    async def test_unknown(self, registry):
        with pytest.raises(NotFoundError):
            await registry.update(uuid4(), PrimitiveUpdate(description="x"))


# ============================================================================
# Built-ins
# ============================================================================


class TestBuiltIns:
    async def test_built_in_is_immutable(self, registry, definition_factory):
        await registry.create(definition_factory(), built_in=True)

        with pytest.raises(ImmutableError):
            await registry.update("echo", PrimitiveUpdate(description="Changed"))
        with pytest.raises(ImmutableError):
            await registry.delete("echo")

    async def test_built_in_can_be_dismounted(self, registry, cache, definition_factory):
        created = await registry.create(definition_factory(), built_in=True)

        await registry.dismount(created.id)
        assert cache.get(created.id) is None

        await registry.mount(created.id)
        assert cache.get(created.id) is not None


# ============================================================================
# Delete
# ============================================================================


class TestDelete:
    async def test_delete_evicts(self, registry, cache, definition_factory):
        created = await registry.create(definition_factory())

        deleted = await registry.delete("echo")

        assert deleted.id == created.id
        assert cache.get(created.id) is None
        assert await registry.get(created.id) is None

    async def test_history_survives_delete(self, registry, sessionmaker, definition_factory):
        created = await registry.create(definition_factory())
        now = datetime.now(UTC)
        await ExecutionHistoryRecorder(sessionmaker).record(
            ExecutionRecordCreate(
                primitive_id=created.id,
                primitive_name=created.name,
                input={"message": "hi"},
                output={"message": "hi"},
                success=True,
                outcome=ExecutionOutcome.SUCCESS,
                execution_time_ms=1.5,
                started_at=now,
                completed_at=now,
            )
        )

        await registry.delete(created.id)

        async with sessionmaker() as session:
            executions, total = await ExecutionHistoryService(session).get_executions()
        assert total == 1
        assert executions[0].primitive_id is None
        assert executions[0].primitive_name == "echo"

    async def test_unknown(self, registry):
        with pytest.raises(NotFoundError):
            await registry.delete("missing")


# ============================================================================
# Mount / dismount
# ============================================================================


class TestMounting:
    async def test_dismount_keeps_definition(self, registry, cache, definition_factory):
        created = await registry.create(definition_factory())

        dismounted = await registry.dismount("echo")

        assert dismounted.enabled is False
        assert cache.get(created.id) is None
        assert (await registry.get(created.id)).enabled is False

    async def test_idempotent(self, registry, cache, definition_factory):
        created = await registry.create(definition_factory())

        await registry.mount(created.id)
        await registry.mount(created.id)
        assert len(cache) == 1

        await registry.dismount(created.id)
        await registry.dismount(created.id)
        assert len(cache) == 0

    async def test_unknown(self, registry):
        with pytest.raises(NotFoundError):
            await registry.mount("missing")
        with pytest.raises(NotFoundError):
            await registry.dismount(str(uuid4()))

    async def test_initialize_rebuilds_from_store(self, registry, cache, definition_factory):
        kept = await registry.create(definition_factory(name="kept"))
        off = await registry.create(definition_factory(name="off"))
        await registry.dismount(off.id)
        cache.clear()

        count = await registry.initialize()

        assert count == 1
        assert cache.get(kept.id) is not None
        assert cache.get(off.id) is None


# ============================================================================
# Queries
# ============================================================================


@pytest.fixture
async def catalog(registry, definition_factory):
    await registry.create(
        definition_factory(
            name="format_money", description="Format cents", category="commerce", tags=["money"]
        )
    )
    await registry.create(
        definition_factory(
            name="parse_money",
            description="Parse a price",
            category="commerce",
            tags=["money", "parsing"],
            tier=PrimitiveTier.PROPRIETARY,
        )
    )
    await registry.create(
        definition_factory(name="shout", description="Upper-case text", category=None, tags=[])
    )
    hidden = await registry.create(
        definition_factory(
            name="hidden_tool", description="Dismounted", category="ops", tags=["money"]
        )
    )
    await registry.dismount(hidden.id)


class TestQueries:
    async def test_list_enabled_only(self, registry, catalog):
        names = [p.name for p in await registry.list()]
        assert names == ["format_money", "parse_money", "shout"]

    async def test_list_all(self, registry, catalog):
        names = [p.name for p in await registry.list(enabled_only=False)]
        assert "hidden_tool" in names

    async def test_list_by_category_and_tags(self, registry, catalog):
        assert [p.name for p in await registry.list(category="commerce", limit=1)] == [
            "format_money"
        ]
        tagged = await registry.list(tags=["parsing"])
        assert [p.name for p in tagged] == ["parse_money"]

    async def test_search(self, registry, catalog):
        assert {p.name for p in await registry.search("MONEY")} == {"format_money", "parse_money"}
        # Tags match exactly, dismounted primitives included
        assert "hidden_tool" in {p.name for p in await registry.search("money")}
        assert [p.name for p in await registry.search("upper-case")] == ["shout"]
        assert [p.name for p in await registry.search("parsing")] == ["parse_money"]
        assert await registry.search("   ") == []

    async def test_categories(self, registry, catalog):
        assert await registry.get_categories() == ["commerce", "ops"]

    async def test_stats(self, registry, catalog):
        stats = await registry.stats()

        assert stats.total == 4
        assert stats.mounted == 3
        assert stats.by_category == {"commerce": 2, "uncategorized": 1, "ops": 1}
        assert stats.by_tier == {"FREE": 3, "PROPRIETARY": 1}
        assert stats.recent_executions == 0

    async def test_require(self, registry, catalog):
        assert (await registry.require("shout")).name == "shout"
        with pytest.raises(NotFoundError):
            await registry.require("nope")
