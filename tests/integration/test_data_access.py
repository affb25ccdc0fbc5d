"""
Integration tests for context.db (PrimitiveDataAccess) against SQLite.
"""

from decimal import Decimal

import pytest

from toolmount.exceptions import ValidationError
from toolmount.services.data_access import PrimitiveDataAccess, data_access_factory

pytestmark = pytest.mark.integration


@pytest.fixture
def orders(sessionmaker) -> PrimitiveDataAccess:
    return PrimitiveDataAccess(sessionmaker, namespace="order_tools")


class TestPrimitiveDataAccess:
    async def test_put_and_get(self, orders):
        stored = await orders.put("orders", "A-1", {"total": 1200, "items": ["sku-1"]})

        assert stored == {"total": 1200, "items": ["sku-1"]}
        assert await orders.get("orders", "A-1") == {"total": 1200, "items": ["sku-1"]}

    async def test_get_missing(self, orders):
        assert await orders.get("orders", "nope") is None

    async def test_put_replaces(self, orders):
        await orders.put("orders", "A-1", {"total": 1})
        await orders.put("orders", "A-1", {"total": 2})

        assert await orders.get("orders", "A-1") == {"total": 2}
        assert await orders.count("orders") == 1

    async def test_delete(self, orders):
        await orders.put("orders", "A-1", 1)

        assert await orders.delete("orders", "A-1") is True
        assert await orders.delete("orders", "A-1") is False
        assert await orders.get("orders", "A-1") is None

    async def test_find_ordered_and_limited(self, orders):
        for key in ("c", "a", "b"):
            await orders.put("orders", key, key.upper())

        assert await orders.find("orders") == [
            {"key": "a", "value": "A"},
            {"key": "b", "value": "B"},
            {"key": "c", "value": "C"},
        ]
        assert [doc["key"] for doc in await orders.find("orders", limit=2)] == ["a", "b"]

    async def test_collections_are_separate(self, orders):
        await orders.put("orders", "A-1", 1)
        await orders.put("customers", "A-1", 2)

        assert await orders.count("orders") == 1
        assert await orders.get("customers", "A-1") == 2

    async def test_namespaces_are_isolated(self, sessionmaker, orders):
        other = PrimitiveDataAccess(sessionmaker, namespace="other_tool")
        await orders.put("orders", "A-1", {"owner": "order_tools"})

        assert await other.get("orders", "A-1") is None
        assert await other.count("orders") == 0
        assert await other.delete("orders", "A-1") is False

    async def test_non_json_values_are_stringified(self, orders):
        assert await orders.put("prices", "p", {"amount": Decimal("1.50")}) == {"amount": "1.50"}

    async def test_circular_value_rejected(self, orders):
        value: dict = {}
        value["self"] = value
        with pytest.raises(ValidationError):
            await orders.put("orders", "loop", value)

    @pytest.mark.parametrize(("collection", "key"), [("", "k"), ("orders", ""), (None, "k")])
    async def test_invalid_names(self, orders, collection, key):
        with pytest.raises(ValidationError):
            await orders.get(collection, key)


def test_factory_scopes_by_primitive_name(sessionmaker, snapshot_factory):
    factory = data_access_factory(sessionmaker)
    access = factory(snapshot_factory(name="format_price"))
    assert access.namespace == "format_price"


def test_namespace_is_read_only(orders):
    with pytest.raises(AttributeError):
        orders.namespace = "other_tool"
    with pytest.raises(AttributeError):
        orders.extra = "value"
    assert orders.namespace == "order_tools"
