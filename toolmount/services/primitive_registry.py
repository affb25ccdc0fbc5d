"""
toolmount.services.primitive_registry - Registry Store

Persistent CRUD for primitive definitions. Owns name uniqueness and
built-in immutability, and keeps the mount cache in step with the
``enabled`` flag.

Every mutating operation follows the same order: validate, persist and
commit, then apply one short cache update. The cache lock is never held
across database I/O.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import String, cast, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from toolmount.core.tools.base import (
    MountedTool,
    PrimitiveDefinition,
    PrimitiveSnapshot,
    PrimitiveTier,
    PrimitiveUpdate,
    RegistryStats,
)
from toolmount.core.tools.registry import MountCache
from toolmount.core.tools.sandbox import source_digest
from toolmount.core.tools.schema import convert_schema
from toolmount.core.tools.validator import validate_handler
from toolmount.exceptions import ConflictError, ImmutableError, NotFoundError
from toolmount.models.primitive import Primitive, PrimitiveExecution
from toolmount.services.execution_history import ExecutionHistoryService
from toolmount.settings import ToolmountSettings, get_settings

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 100
SEARCH_LIMIT = 20
UNCATEGORIZED = "uncategorized"

# Fields that can't be cleared by an update (None means "leave as is")
_NON_NULLABLE_FIELDS = frozenset(
    {"name", "description", "tags", "tier", "input_schema", "handler", "timeout_ms", "sandboxed"}
)


def _parse_id(id_or_name: str | UUID) -> UUID | None:
    if isinstance(id_or_name, UUID):
        return id_or_name
    try:
        return UUID(str(id_or_name))
    except ValueError:
        return None


class PrimitiveRegistry:
    """
    Registry Store for primitives.

    Provides methods to:
    - Create, update and delete primitives (validated before persisting)
    - Look primitives up by id or name, list, search, and categorize them
    - Mount and dismount primitives (idempotent)
    - Compute registry statistics

    Example:
        >>> registry = PrimitiveRegistry(sessionmaker, cache)
        >>> await registry.initialize()
        >>> echo = await registry.create(
        ...     PrimitiveDefinition(name="echo", description="Echo", handler="return input")
        ... )
        >>> await registry.dismount(echo.id)
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        cache: MountCache,
        settings: ToolmountSettings | None = None,
    ) -> None:
        """
        Initialize registry store.

        Args:
            sessionmaker: Session factory; one session is opened per operation
            cache: Mount cache kept consistent with the ``enabled`` flag
            settings: Runtime settings (defaults to get_settings())
        """
        self._sessionmaker = sessionmaker
        self.cache = cache
        self.settings = settings or get_settings()

    # =========================================================================
    # Startup
    # =========================================================================

    async def initialize(self) -> int:
        """
        Rebuild the mount cache from every enabled primitive.

        Returns:
            Number of mounted primitives
        """
        async with self._sessionmaker() as session:
            result = await session.execute(select(Primitive).where(Primitive.enabled.is_(True)))
            snapshots = [self._snapshot(row) for row in result.scalars().all()]

        count = self.cache.load(snapshots)
        logger.info(f"Registry initialized with {count} mounted primitives")
        return count

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, id_or_name: str | UUID) -> PrimitiveSnapshot | None:
        """
        Get a primitive by id or name.

        Returns:
            PrimitiveSnapshot if found, None otherwise
        """
        async with self._sessionmaker() as session:
            row = await self._find(session, id_or_name)
            return self._snapshot(row) if row is not None else None

    async def require(self, id_or_name: str | UUID) -> PrimitiveSnapshot:
        """Like get(), but raises NotFoundError when absent."""
        primitive = await self.get(id_or_name)
        if primitive is None:
            raise NotFoundError(f"Primitive not found: {id_or_name}")
        return primitive

    async def list(
        self,
        category: str | None = None,
        tags: list[str] | None = None,
        enabled_only: bool = True,
        limit: int | None = None,
    ) -> list[PrimitiveSnapshot]:
        """
        List primitives ordered by name.

        Args:
            category: Only this category
            tags: Only primitives carrying at least one of these tags
            enabled_only: Only mounted primitives (default True)
            limit: Maximum results (default 100)

        Returns:
            List of matching primitives
        """
        limit = limit or DEFAULT_LIST_LIMIT
        query = select(Primitive).order_by(Primitive.name.asc())

        if category:
            query = query.where(Primitive.category == category)
        if enabled_only:
            query = query.where(Primitive.enabled.is_(True))
        if not tags:
            # Tag matching happens in Python (JSON arrays aren't portable to filter on)
            query = query.limit(limit)

        async with self._sessionmaker() as session:
            result = await session.execute(query)
            rows = list(result.scalars().all())

        if tags:
            wanted = set(tags)
            rows = [row for row in rows if wanted.intersection(row.tags or [])][:limit]

        return [self._snapshot(row) for row in rows]

    async def search(self, query: str) -> list[PrimitiveSnapshot]:
        """
        Search primitives by name/description substring or exact tag.

        Case-insensitive, enabled or not, at most 20 results.
        """
        text = query.strip()
        if not text:
            return []

        pattern = f"%{text}%"
        stmt = (
            select(Primitive)
            .where(
                or_(
                    Primitive.name.ilike(pattern),
                    Primitive.description.ilike(pattern),
                    # Coarse prefilter; exact tag match is checked below
                    cast(Primitive.tags, String).like(f'%"{text}"%'),
                )
            )
            .order_by(Primitive.name.asc())
        )

        async with self._sessionmaker() as session:
            result = await session.execute(stmt)
            rows = list(result.scalars().all())

        lowered = text.lower()
        matches = [
            row
            for row in rows
            if lowered in row.name.lower()
            or lowered in row.description.lower()
            or text in (row.tags or [])
        ]
        return [self._snapshot(row) for row in matches[:SEARCH_LIMIT]]

    async def get_categories(self) -> list[str]:
        """Distinct non-null categories, sorted."""
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(Primitive.category)
                .where(Primitive.category.is_not(None))
                .distinct()
                .order_by(Primitive.category)
            )
            return [row for row in result.scalars().all() if row]

    async def stats(self) -> RegistryStats:
        """
        Aggregate registry statistics.

        Returns:
            Totals, mounted count, counts by category ("uncategorized" for
            none) and tier, plus executions in the last 24 hours
        """
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(Primitive.category, Primitive.tier, Primitive.enabled)
            )
            rows = result.all()
            recent = await ExecutionHistoryService(session).count_since(hours=24)

        stats = RegistryStats(total=len(rows), recent_executions=recent)
        for row in rows:
            if row.enabled:
                stats.mounted += 1
            category = row.category or UNCATEGORIZED
            stats.by_category[category] = stats.by_category.get(category, 0) + 1
            stats.by_tier[row.tier] = stats.by_tier.get(row.tier, 0) + 1
        return stats

    # =========================================================================
    # Mutations
    # =========================================================================

    async def create(
        self, definition: PrimitiveDefinition, *, built_in: bool = False
    ) -> PrimitiveSnapshot:
        """
        Create a primitive and mount it.

        Args:
            definition: Primitive definition
            built_in: Mark as immutable seed (internal use)

        Returns:
            The stored primitive (enabled, version 1)

        Raises:
            ValidationError: Handler or schema rejected
            ConflictError: Name already taken
        """
        validate_handler(definition.handler)
        convert_schema(definition.input_schema, name=definition.name)

        row = Primitive(
            name=definition.name,
            description=definition.description,
            category=definition.category,
            tags=list(definition.tags),
            icon=definition.icon,
            tier=PrimitiveTier(definition.tier).value,
            input_schema=definition.input_schema,
            handler=definition.handler,
            timeout_ms=self.settings.clamp_timeout_ms(definition.timeout_ms),
            sandboxed=definition.sandboxed,
            enabled=True,
            built_in=built_in,
            version=1,
        )

        async with self._sessionmaker() as session:
            if await self._name_taken(session, definition.name):
                raise ConflictError(f"Primitive name already exists: {definition.name}")
            session.add(row)
            await self._commit(session, definition.name)
            snapshot = self._snapshot(row)

        self.cache.mount(snapshot)
        logger.info(
            f"Created primitive: {snapshot.name}",
            extra={
                "primitive_id": str(snapshot.id),
                "built_in": built_in,
                "handler": self._describe_handler(snapshot.handler),
            },
        )
        return snapshot

    async def update(self, id_or_name: str | UUID, changes: PrimitiveUpdate) -> PrimitiveSnapshot:
        """
        Update a primitive.

        Only explicitly set fields are applied; the version is incremented.
        A mounted primitive's cache entry is replaced atomically.

        Raises:
            NotFoundError: Unknown id/name
            ImmutableError: Built-in primitive
            ValidationError: New handler or schema rejected
            ConflictError: New name already taken
        """
        fields: dict[str, Any] = changes.model_dump(exclude_unset=True)
        fields = {
            k: v for k, v in fields.items() if not (v is None and k in _NON_NULLABLE_FIELDS)
        }

        async with self._sessionmaker() as session:
            row = await self._find(session, id_or_name)
            if row is None:
                raise NotFoundError(f"Primitive not found: {id_or_name}")
            if row.built_in:
                raise ImmutableError(f"Cannot update built-in primitive: {row.name}")

            if "handler" in fields:
                validate_handler(fields["handler"])
            if "input_schema" in fields:
                convert_schema(fields["input_schema"], name=fields.get("name", row.name))
            if "name" in fields and fields["name"] != row.name:
                if await self._name_taken(session, fields["name"]):
                    raise ConflictError(f"Primitive name already exists: {fields['name']}")
            if "timeout_ms" in fields:
                fields["timeout_ms"] = self.settings.clamp_timeout_ms(fields["timeout_ms"])
            if "tier" in fields:
                fields["tier"] = PrimitiveTier(fields["tier"]).value

            for key, value in fields.items():
                setattr(row, key, value)
            row.version = row.version + 1

            await self._commit(session, row.name)
            snapshot = self._snapshot(row)

        self.cache.replace(snapshot)
        logger.info(
            f"Updated primitive: {snapshot.name} (v{snapshot.version})",
            extra={"primitive_id": str(snapshot.id), "fields": sorted(fields)},
        )
        return snapshot

    async def delete(self, id_or_name: str | UUID) -> PrimitiveSnapshot:
        """
        Delete a primitive and evict it from the cache.

        Execution history is kept (detached from the deleted primitive).

        Returns:
            Snapshot of the deleted primitive

        Raises:
            NotFoundError: Unknown id/name
            ImmutableError: Built-in primitive
        """
        async with self._sessionmaker() as session:
            row = await self._find(session, id_or_name)
            if row is None:
                raise NotFoundError(f"Primitive not found: {id_or_name}")
            if row.built_in:
                raise ImmutableError(f"Cannot delete built-in primitive: {row.name}")

            snapshot = self._snapshot(row)
            await session.execute(
                update(PrimitiveExecution)
                .where(PrimitiveExecution.primitive_id == row.id)
                .values(primitive_id=None)
            )
            await session.delete(row)
            await session.commit()

        self.cache.evict(snapshot.id)
        logger.info(f"Deleted primitive: {snapshot.name}", extra={"primitive_id": str(snapshot.id)})
        return snapshot

    async def mount(self, id_or_name: str | UUID) -> MountedTool:
        """
        Enable a primitive and add it to the mount cache.

        Idempotent: mounting twice leaves a single cache entry.

        Raises:
            NotFoundError: Unknown id/name
        """
        async with self._sessionmaker() as session:
            row = await self._find(session, id_or_name)
            if row is None:
                raise NotFoundError(f"Primitive not found: {id_or_name}")
            if not row.enabled:
                row.enabled = True
                await session.commit()
            snapshot = self._snapshot(row)

        return self.cache.mount(snapshot)

    async def dismount(self, id_or_name: str | UUID) -> PrimitiveSnapshot:
        """
        Disable a primitive and evict it from the mount cache.

        Idempotent. The persisted definition is kept.

        Raises:
            NotFoundError: Unknown id/name
        """
        async with self._sessionmaker() as session:
            row = await self._find(session, id_or_name)
            if row is None:
                raise NotFoundError(f"Primitive not found: {id_or_name}")
            if row.enabled:
                row.enabled = False
                await session.commit()
            snapshot = self._snapshot(row)

        self.cache.evict(snapshot.id)
        logger.info(f"Dismounted primitive: {snapshot.name}")
        return snapshot

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _find(self, session: AsyncSession, id_or_name: str | UUID) -> Primitive | None:
        primitive_id = _parse_id(id_or_name)
        if primitive_id is not None:
            row = await session.get(Primitive, primitive_id)
            if row is not None:
                return row
        result = await session.execute(select(Primitive).where(Primitive.name == str(id_or_name)))
        return result.scalar_one_or_none()

    async def _name_taken(self, session: AsyncSession, name: str) -> bool:
        result = await session.execute(
            select(func.count(Primitive.id)).where(Primitive.name == name)
        )
        return (result.scalar() or 0) > 0

    async def _commit(self, session: AsyncSession, name: str) -> None:
        try:
            await session.commit()
        except IntegrityError as e:
            # Lost a race with a concurrent create/rename
            await session.rollback()
            raise ConflictError(f"Primitive name already exists: {name}") from e

    def _snapshot(self, row: Primitive) -> PrimitiveSnapshot:
        return PrimitiveSnapshot.model_validate(row)

    def _describe_handler(self, handler: str) -> str:
        if self.settings.log_handler_source:
            return handler
        return f"[handler:{source_digest(handler)}]"


__all__ = ["DEFAULT_LIST_LIMIT", "SEARCH_LIMIT", "UNCATEGORIZED", "PrimitiveRegistry"]
