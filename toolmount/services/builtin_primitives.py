"""
toolmount.services.builtin_primitives - Built-in Primitive Seeds

Primitives every installation starts with. They are stored with
built_in=True, so the registry rejects any update or delete of them.
Seeding is idempotent: existing names are left alone.
"""

import logging

from toolmount.core.tools.base import PrimitiveDefinition
from toolmount.services.primitive_registry import PrimitiveRegistry

logger = logging.getLogger(__name__)


RECORD_STORE = PrimitiveDefinition(
    name="record_store",
    description=(
        "Store and read JSON records in named collections. "
        "action is one of get, put, delete, list."
    ),
    category="data",
    tags=["data", "storage"],
    icon="database",
    input_schema={
        "type": "object",
        "properties": {
            "action": {"type": "string", "description": "get, put, delete or list"},
            "collection": {"type": "string", "description": "Collection name"},
            "key": {"type": "string", "description": "Record key (get, put, delete)"},
            "value": {"description": "Record value (put)"},
            "limit": {"type": "integer", "description": "Max records (list)"},
        },
        "required": ["action", "collection"],
    },
    handler="""\
action = input["action"]
collection = input["collection"]
if action == "list":
    items = await context.db.find(collection, input.get("limit") or 100)
    return {"items": items, "count": await context.db.count(collection)}
if "key" not in input:
    raise ValueError("key is required for " + action)
key = input["key"]
if action == "get":
    value = await context.db.get(collection, key)
    return {"found": value is not None, "value": value}
if action == "put":
    return {"value": await context.db.put(collection, key, input.get("value"))}
if action == "delete":
    return {"deleted": await context.db.delete(collection, key)}
raise ValueError("Unknown action: " + str(action))
""",
    timeout_ms=10_000,
)

SUMMARIZE_NUMBERS = PrimitiveDefinition(
    name="summarize_numbers",
    description="Count, sum, min, max and mean of a list of numbers",
    category="analytics",
    tags=["math", "statistics"],
    icon="calculator",
    input_schema={
        "type": "object",
        "properties": {
            "values": {"type": "array", "description": "Numbers to summarize"},
        },
        "required": ["values"],
    },
    handler="""\
values = [float(v) for v in input["values"]]
if not values:
    return {"count": 0, "sum": 0, "min": None, "max": None, "mean": None}
total = math.fsum(values)
return {
    "count": len(values),
    "sum": total,
    "min": min(values),
    "max": max(values),
    "mean": total / len(values),
}
""",
    timeout_ms=5_000,
)

SLUGIFY_TEXT = PrimitiveDefinition(
    name="slugify_text",
    description="Turn text into a URL slug, optionally with a random suffix",
    category="content",
    tags=["text", "url"],
    icon="link",
    input_schema={
        "type": "object",
        "properties": {
            "text": {"type": "string", "description": "Text to slugify"},
            "unique": {"type": "boolean", "description": "Append a short random suffix"},
        },
        "required": ["text"],
    },
    handler="""\
slug = context.utils.slugify(input["text"])
if input.get("unique"):
    slug = slug + "-" + context.utils.generate_id(6).lower()
return {"slug": slug}
""",
    timeout_ms=5_000,
)

FORMAT_PRICE = PrimitiveDefinition(
    name="format_price",
    description="Format an amount in minor units (cents) as a currency string",
    category="commerce",
    tags=["money", "formatting"],
    icon="currency",
    input_schema={
        "type": "object",
        "properties": {
            "cents": {"type": "integer", "description": "Amount in minor units"},
            "currency": {"type": "string", "description": "ISO currency code, default USD"},
        },
        "required": ["cents"],
    },
    handler="""\
currency = input.get("currency") or "USD"
return {"formatted": context.utils.format_currency(input["cents"], currency)}
""",
    timeout_ms=5_000,
)

BUILTIN_PRIMITIVES: tuple[PrimitiveDefinition, ...] = (
    RECORD_STORE,
    SUMMARIZE_NUMBERS,
    SLUGIFY_TEXT,
    FORMAT_PRICE,
)


async def seed_builtin_primitives(
    registry: PrimitiveRegistry,
    definitions: tuple[PrimitiveDefinition, ...] = BUILTIN_PRIMITIVES,
) -> int:
    """
    Create missing built-in primitives.

    Args:
        registry: Registry store to seed
        definitions: Seeds to apply

    Returns:
        Number of primitives created
    """
    created = 0
    for definition in definitions:
        existing = await registry.get(definition.name)
        if existing is not None:
            if not existing.built_in:
                logger.warning(
                    f"Skipping built-in seed {definition.name}: name taken by a user primitive",
                    extra={"primitive_id": str(existing.id)},
                )
            continue
        await registry.create(definition, built_in=True)
        created += 1

    if created:
        logger.info(f"Seeded {created} built-in primitives")
    return created


__all__ = [
    "BUILTIN_PRIMITIVES",
    "FORMAT_PRICE",
    "RECORD_STORE",
    "SLUGIFY_TEXT",
    "SUMMARIZE_NUMBERS",
    "seed_builtin_primitives",
]
