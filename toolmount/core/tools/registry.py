"""
toolmount.core.tools.registry - Mount Cache

In-memory index of currently enabled primitives.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from types import MappingProxyType
from uuid import UUID

from .base import MountedTool, PrimitiveSnapshot

logger = logging.getLogger(__name__)

CacheListener = Callable[[int], None]


class MountCache:
    """
    Process-wide map of primitive id -> MountedTool.

    Features:
    - Lock-free reads: readers grab the current immutable mapping
    - Single-writer mutation: every write builds a new mapping under a lock
      and swaps it in, so no reader ever observes a half-updated entry
    - Generation counter bumped on every mount-set change, used by the
      agent-facing router to know when to refresh
    - Listeners notified after each change

    Owned by ToolRuntime: constructed at startup, rebuilt from the registry
    store, cleared at shutdown. Never held across database I/O.

    Example:
        >>> cache = MountCache()
        >>> cache.mount(snapshot)
        >>> tool = cache.get_by_name("echo")
        >>> cache.record_invocation(tool.id)
        >>> cache.evict(tool.id)
    """

    def __init__(self) -> None:
        """Initialize empty mount cache."""
        self._lock = threading.Lock()
        self._tools: MappingProxyType[UUID, MountedTool] = MappingProxyType({})
        self._name_to_id: MappingProxyType[str, UUID] = MappingProxyType({})
        self._generation = 0
        self._listeners: list[CacheListener] = []

    @property
    def generation(self) -> int:
        """Incremented whenever the mounted set or any entry changes."""
        return self._generation

    def add_listener(self, listener: CacheListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: CacheListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Reads (no lock)
    # ------------------------------------------------------------------

    def get(self, primitive_id: UUID) -> MountedTool | None:
        return self._tools.get(primitive_id)

    def get_by_name(self, name: str) -> MountedTool | None:
        """
        Get mounted tool by primitive name.

        Args:
            name: Primitive name (e.g., "echo")

        Returns:
            MountedTool if mounted, None otherwise
        """
        tools, names = self._tools, self._name_to_id
        primitive_id = names.get(name)
        if primitive_id is None:
            return None
        return tools.get(primitive_id)

    def list(self) -> list[MountedTool]:
        """All mounted tools, ordered by name."""
        return sorted(self._tools.values(), key=lambda t: t.name)

    def is_mounted(self, primitive_id: UUID) -> bool:
        return primitive_id in self._tools

    # ------------------------------------------------------------------
    # Writes (single writer)
    # ------------------------------------------------------------------

    def mount(self, primitive: PrimitiveSnapshot) -> MountedTool:
        """
        Mount a primitive.

        Idempotent: mounting an already-mounted id keeps the single existing
        entry (and its counters) and refreshes its snapshot. A snapshot older
        than the mounted version is ignored.

        Args:
            primitive: Snapshot of an enabled primitive

        Returns:
            The MountedTool now in the cache
        """
        with self._lock:
            existing = self._tools.get(primitive.id)
            if existing is not None and _is_stale(primitive, existing):
                return existing
            if existing is not None:
                entry = existing.model_copy(update={"primitive": primitive})
            else:
                entry = MountedTool(primitive=primitive)
            self._swap(upserts=[entry])

        logger.info(
            f"Mounted primitive: {primitive.name}",
            extra={
                "primitive_id": str(primitive.id),
                "version": primitive.version,
                "already_mounted": existing is not None,
            },
        )
        self._notify()
        return entry

    def replace(self, primitive: PrimitiveSnapshot) -> MountedTool | None:
        """
        Atomically replace the entry for an updated primitive.

        Counters carry over. Does nothing if the primitive isn't mounted, and
        keeps the current entry if the snapshot is older than it.

        Returns:
            The new MountedTool, or None if it wasn't mounted
        """
        with self._lock:
            existing = self._tools.get(primitive.id)
            if existing is None:
                return None
            if _is_stale(primitive, existing):
                return existing
            entry = existing.model_copy(update={"primitive": primitive})
            self._swap(upserts=[entry])

        logger.info(
            f"Replaced mounted primitive: {primitive.name}",
            extra={"primitive_id": str(primitive.id), "version": primitive.version},
        )
        self._notify()
        return entry

    def evict(self, primitive_id: UUID) -> bool:
        """
        Remove a primitive from the cache.

        Returns:
            True if an entry was removed, False if it wasn't mounted
        """
        with self._lock:
            existing = self._tools.get(primitive_id)
            if existing is None:
                return False
            self._swap(evictions=[primitive_id])

        logger.info(
            f"Evicted primitive: {existing.name}",
            extra={"primitive_id": str(primitive_id)},
        )
        self._notify()
        return True

    def load(self, primitives: Iterable[PrimitiveSnapshot]) -> int:
        """
        Rebuild the cache from a full set of enabled primitives.

        Existing entries for ids still present keep their counters.
        Entries already newer than the loaded snapshot are kept as they are.

        Returns:
            Number of mounted tools after the rebuild
        """
        with self._lock:
            current = self._tools
            entries: dict[UUID, MountedTool] = {}
            for primitive in primitives:
                existing = current.get(primitive.id)
                if existing is not None and _is_stale(primitive, existing):
                    entries[primitive.id] = existing
                elif existing is not None:
                    entries[primitive.id] = existing.model_copy(update={"primitive": primitive})
                else:
                    entries[primitive.id] = MountedTool(primitive=primitive)
            self._publish(entries)
            count = len(entries)

        logger.info(f"Mount cache loaded with {count} primitives")
        self._notify()
        return count

    def record_invocation(
        self, primitive_id: UUID, at: datetime | None = None
    ) -> MountedTool | None:
        """
        Bump the advisory invocation counters of a mounted tool.

        Returns:
            Updated MountedTool, or None if it is no longer mounted
        """
        with self._lock:
            existing = self._tools.get(primitive_id)
            if existing is None:
                return None
            entry = existing.model_copy(
                update={
                    "invocation_count": existing.invocation_count + 1,
                    "last_invoked": at or datetime.now(UTC),
                }
            )
            # Counter updates don't change what's exposed, so no generation bump
            tools = dict(self._tools)
            tools[primitive_id] = entry
            self._tools = MappingProxyType(tools)
        return entry

    def clear(self) -> None:
        """
        Drop every mounted tool.

        Useful for shutdown and tests.
        """
        with self._lock:
            self._publish({})

        logger.info("Mount cache cleared")
        self._notify()

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _swap(
        self,
        upserts: Iterable[MountedTool] = (),
        evictions: Iterable[UUID] = (),
    ) -> None:
        tools = dict(self._tools)
        for primitive_id in evictions:
            tools.pop(primitive_id, None)
        for entry in upserts:
            tools[entry.id] = entry
        self._publish(tools)

    def _publish(self, tools: dict[UUID, MountedTool]) -> None:
        names = {entry.name: primitive_id for primitive_id, entry in tools.items()}
        # Names first: a reader that sees the new name map but old tools map
        # just gets None from get_by_name for a freshly mounted name
        self._name_to_id = MappingProxyType(names)
        self._tools = MappingProxyType(tools)
        self._generation += 1

    def _notify(self) -> None:
        generation = self._generation
        for listener in list(self._listeners):
            try:
                listener(generation)
            except Exception as e:
                logger.error(
                    f"Mount cache listener failed: {e}",
                    exc_info=True,
                    extra={"generation": generation},
                )

    def __len__(self) -> int:
        """Return number of mounted tools."""
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        """Check if a primitive with given name is mounted."""
        return name in self._name_to_id

    def __repr__(self) -> str:
        return f"MountCache(mounted={len(self)}, generation={self._generation})"


def _is_stale(primitive: PrimitiveSnapshot, existing: MountedTool) -> bool:
    """A snapshot read before the mounted entry was last replaced."""
    return primitive.version < existing.primitive.version


__all__ = ["CacheListener", "MountCache"]
