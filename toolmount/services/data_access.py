"""
toolmount.services.data_access - Scoped Data Access for Handlers

Backs ``context.db``. Each handle is bound to one namespace (the primitive's
name) and can only touch JSON documents in the primitive_data table under
that namespace. No other table is reachable from handler code: the handle
stays in the server process and the sandbox worker forwards each call to it.
"""

import json
import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from toolmount.core.tools.base import PrimitiveSnapshot
from toolmount.exceptions import ValidationError
from toolmount.models.primitive_data import PrimitiveDocument

logger = logging.getLogger(__name__)

MAX_FIND_LIMIT = 1000


def _check_name(kind: str, value: Any, max_length: int) -> str:
    if not isinstance(value, str) or not value or len(value) > max_length:
        raise ValidationError(f"{kind} must be a non-empty string of at most {max_length} chars")
    return value


class PrimitiveDataAccess:
    """
    Data handle scoped to one primitive.

    Example (inside a handler):
        >>> await context.db.put("orders", "A-1", {"total": 1200})
        >>> order = await context.db.get("orders", "A-1")
        >>> await context.db.count("orders")
        1
    """

    __slots__ = ("_namespace", "_sessionmaker")

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], namespace: str) -> None:
        self._sessionmaker = sessionmaker
        self._namespace = _check_name("namespace", namespace, 100)

    @property
    def namespace(self) -> str:
        """The primitive name this handle is bound to (fixed at construction)."""
        return self._namespace

    async def get(self, collection: str, key: str) -> Any:
        """Stored value, or None if absent."""
        _check_name("collection", collection, 100)
        _check_name("key", key, 255)
        async with self._sessionmaker() as session:
            row = await self._find(session, collection, key)
            return row.value if row is not None else None

    async def put(self, collection: str, key: str, value: Any) -> Any:
        """Insert or replace a value; returns the stored (JSON-normalized) value."""
        _check_name("collection", collection, 100)
        _check_name("key", key, 255)
        try:
            stored = json.loads(json.dumps(value, default=str))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Value for {collection}/{key} is not JSON-serializable") from e

        async with self._sessionmaker() as session:
            row = await self._find(session, collection, key)
            if row is None:
                session.add(
                    PrimitiveDocument(
                        namespace=self.namespace, collection=collection, key=key, value=stored
                    )
                )
            else:
                row.value = stored
            await session.commit()

        logger.debug(
            f"Stored {self.namespace}/{collection}/{key}",
            extra={"namespace": self.namespace, "collection": collection},
        )
        return stored

    async def delete(self, collection: str, key: str) -> bool:
        """Remove a value; True if something was deleted."""
        _check_name("collection", collection, 100)
        _check_name("key", key, 255)
        async with self._sessionmaker() as session:
            result = await session.execute(
                delete(PrimitiveDocument).where(
                    PrimitiveDocument.namespace == self.namespace,
                    PrimitiveDocument.collection == collection,
                    PrimitiveDocument.key == key,
                )
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    async def find(self, collection: str, limit: int = 100) -> list[dict[str, Any]]:
        """Documents in a collection as ``{"key": ..., "value": ...}``, ordered by key."""
        _check_name("collection", collection, 100)
        limit = max(1, min(int(limit), MAX_FIND_LIMIT))
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(PrimitiveDocument)
                .where(
                    PrimitiveDocument.namespace == self.namespace,
                    PrimitiveDocument.collection == collection,
                )
                .order_by(PrimitiveDocument.key)
                .limit(limit)
            )
            return [{"key": row.key, "value": row.value} for row in result.scalars().all()]

    async def count(self, collection: str) -> int:
        _check_name("collection", collection, 100)
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(func.count(PrimitiveDocument.id)).where(
                    PrimitiveDocument.namespace == self.namespace,
                    PrimitiveDocument.collection == collection,
                )
            )
            return result.scalar() or 0

    async def _find(
        self, session: AsyncSession, collection: str, key: str
    ) -> PrimitiveDocument | None:
        result = await session.execute(
            select(PrimitiveDocument).where(
                PrimitiveDocument.namespace == self.namespace,
                PrimitiveDocument.collection == collection,
                PrimitiveDocument.key == key,
            )
        )
        return result.scalar_one_or_none()

    def __repr__(self) -> str:
        return f"PrimitiveDataAccess(namespace={self.namespace!r})"


def data_access_factory(
    sessionmaker: async_sessionmaker[AsyncSession],
) -> Callable[[PrimitiveSnapshot], PrimitiveDataAccess]:
    """Build the runtime's ``context.db`` factory for a session factory."""

    def factory(primitive: PrimitiveSnapshot) -> PrimitiveDataAccess:
        return PrimitiveDataAccess(sessionmaker, namespace=primitive.name)

    return factory


__all__ = ["MAX_FIND_LIMIT", "PrimitiveDataAccess", "data_access_factory"]
