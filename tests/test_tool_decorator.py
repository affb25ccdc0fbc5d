"""
Tests for toolmount.core.tools.decorator - @tool decorator and collect_tools.
"""

import inspect
from typing import Any

import pytest

from toolmount.core.tools.base import ApprovalPolicy
from toolmount.core.tools.decorator import (
    _build_parameters_schema,
    _python_type_to_json_schema,
    collect_tools,
    get_tool_spec,
    tool,
)

# ============================================================================
# Type mapping tests
# ============================================================================


class TestPythonTypeToJsonSchema:
    def test_str(self) -> None:
        assert _python_type_to_json_schema(str) == {"type": "string"}

    def test_int(self) -> None:
        assert _python_type_to_json_schema(int) == {"type": "integer"}

    def test_float(self) -> None:
        assert _python_type_to_json_schema(float) == {"type": "number"}

    def test_bool(self) -> None:
        assert _python_type_to_json_schema(bool) == {"type": "boolean"}

    def test_list(self) -> None:
        assert _python_type_to_json_schema(list) == {"type": "array"}

    def test_dict(self) -> None:
        assert _python_type_to_json_schema(dict) == {"type": "object"}

    def test_list_str(self) -> None:
        result = _python_type_to_json_schema(list[str])
        assert result == {"type": "array", "items": {"type": "string"}}

    def test_dict_generic(self) -> None:
        assert _python_type_to_json_schema(dict[str, Any]) == {"type": "object"}

    def test_optional(self) -> None:
        assert _python_type_to_json_schema(str | None) == {"type": "string"}

    def test_multi_union_is_untyped(self) -> None:
        assert _python_type_to_json_schema(str | int) == {}

    def test_any_and_missing(self) -> None:
        assert _python_type_to_json_schema(Any) == {}
        assert _python_type_to_json_schema(inspect.Parameter.empty) == {}


# ============================================================================
# Parameter schema tests
# ============================================================================


class TestBuildParametersSchema:
    def test_required_and_defaults(self) -> None:
        async def create(name: str, timeout_ms: int = 5000, category: str | None = None):
            pass

        schema = _build_parameters_schema(create)

        assert schema["type"] == "object"
        assert schema["required"] == ["name"]
        assert schema["properties"]["timeout_ms"] == {"type": "integer", "default": 5000}
        # None defaults aren't advertised
        assert schema["properties"]["category"] == {"type": "string"}

    def test_skips_self_and_varargs(self) -> None:
        class Toolkit:
            async def run(self, tool_id: str, *args: Any, **kwargs: Any):
                pass

        schema = _build_parameters_schema(Toolkit.run)
        assert list(schema["properties"]) == ["tool_id"]

    def test_no_parameters(self) -> None:
        async def stats():
            pass

        assert _build_parameters_schema(stats) == {"type": "object", "properties": {}}


# ============================================================================
# Decorator tests
# ============================================================================


class TestToolDecorator:
    def test_attaches_spec(self) -> None:
        @tool(
            name="toolmount_delete_tool",
            description="Delete a primitive",
            approval=ApprovalPolicy.ASK_MODE,
            category="management",
            tags=["registry"],
        )
        async def delete_tool(tool_id: str) -> dict:
            return {}

        spec = get_tool_spec(delete_tool)
        assert spec is not None
        assert spec.name == "toolmount_delete_tool"
        assert spec.description == "Delete a primitive"
        assert spec.approval is ApprovalPolicy.ASK_MODE
        assert spec.category == "management"
        assert spec.tags == ["registry"]
        assert spec.parameters_schema["required"] == ["tool_id"]

    def test_defaults(self) -> None:
        @tool()
        async def list_tools() -> list:
            """List every primitive."""
            return []

        spec = get_tool_spec(list_tools)
        assert spec.name == "list_tools"
        assert spec.description == "List every primitive."
        assert spec.approval is ApprovalPolicy.NEVER
        assert spec.runs_handlers is False

    def test_runs_handlers(self) -> None:
        @tool(approval=ApprovalPolicy.ASK_MODE, runs_handlers=True)
        async def try_tool(id_or_name: str) -> dict:
            return {}

        assert get_tool_spec(try_tool).runs_handlers is True

    def test_rejects_sync_functions(self) -> None:
        with pytest.raises(TypeError):

            @tool(name="sync")
            def sync_tool() -> None:
                pass

    def test_undecorated_has_no_spec(self) -> None:
        async def plain() -> None:
            pass

        assert get_tool_spec(plain) is None


# ============================================================================
# collect_tools tests
# ============================================================================


class Calculator:
    def __init__(self, offset: int) -> None:
        self.offset = offset

    @tool(name="calc_add", description="Add two numbers")
    async def add(self, a: int, b: int) -> int:
        return a + b + self.offset

    @tool(name="calc_negate", description="Negate", approval=ApprovalPolicy.ALWAYS)
    async def negate(self, value: int) -> int:
        return -value

    async def helper(self) -> None:
        pass


class TestCollectTools:
    def test_collects_bound_methods_sorted(self) -> None:
        tools = collect_tools(Calculator(offset=0))
        assert [t.spec.name for t in tools] == ["calc_add", "calc_negate"]
        assert tools[1].spec.approval is ApprovalPolicy.ALWAYS

    async def test_implementation_uses_instance(self) -> None:
        tools = {t.spec.name: t for t in collect_tools(Calculator(offset=10))}
        result = await tools["calc_add"].implementation._execute({"a": 1, "b": 2})
        assert result == 13

    async def test_extra_arguments_are_dropped(self) -> None:
        tools = {t.spec.name: t for t in collect_tools(Calculator(offset=0))}
        result = await tools["calc_negate"].implementation._execute(
            {"value": 4, "reason": "model added this"}
        )
        assert result == -4

    def test_object_without_tools(self) -> None:
        assert collect_tools(object()) == []
