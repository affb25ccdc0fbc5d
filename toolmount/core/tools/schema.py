"""
toolmount.core.tools.schema - Schema Converter

Turns a primitive's declarative input schema into a typed parameter set.

Mapping (type tag -> Python type):
    string  -> str
    number  -> float
    integer -> int
    boolean -> bool
    array   -> list[Any]
    object  -> dict[str, Any]
    other / missing -> Any (opaque passthrough)

A parameter is optional unless listed in the schema's ``required`` array.
Unknown top-level keys in raw input are ignored, not rejected.

Example:
    >>> params = convert_schema(
    ...     {
    ...         "type": "object",
    ...         "properties": {"message": {"type": "string"}},
    ...         "required": ["message"],
    ...     },
    ...     name="echo",
    ... )
    >>> params.validate({"message": "hi", "extra": 1})
    {'message': 'hi'}
"""

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from functools import cached_property
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, create_model
from pydantic import ValidationError as PydanticValidationError

from toolmount.exceptions import ValidationError

logger = logging.getLogger(__name__)


class ParamType(StrEnum):
    """Closed set of parameter types a schema can declare."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    OPAQUE = "opaque"


_PYTHON_TYPES: dict[ParamType, Any] = {
    ParamType.STRING: str,
    ParamType.NUMBER: float,
    ParamType.INTEGER: int,
    ParamType.BOOLEAN: bool,
    ParamType.ARRAY: list[Any],
    ParamType.OBJECT: dict[str, Any],
    ParamType.OPAQUE: Any,
}


def param_type_for(tag: Any) -> ParamType:
    """Map a schema type tag to a ParamType (anything unknown is opaque)."""
    if isinstance(tag, str):
        try:
            return ParamType(tag)
        except ValueError:
            return ParamType.OPAQUE
    return ParamType.OPAQUE


@dataclass(frozen=True)
class ParamSpec:
    """One declared parameter."""

    name: str
    type: ParamType
    required: bool = False
    description: str | None = None

    @property
    def python_type(self) -> Any:
        return _PYTHON_TYPES[self.type]

    def to_json_schema(self) -> dict[str, Any]:
        prop: dict[str, Any] = {}
        if self.type is not ParamType.OPAQUE:
            prop["type"] = self.type.value
        if self.description:
            prop["description"] = self.description
        return prop


@dataclass(frozen=True)
class ParameterSet:
    """
    Typed, validated parameter set derived from a declarative schema.

    Consumed by the agent-facing router (typed signature via ``model`` and
    ``to_json_schema``) and by the execution runtime (``validate``).
    """

    name: str
    params: tuple[ParamSpec, ...] = field(default_factory=tuple)

    @property
    def required(self) -> list[str]:
        return [p.name for p in self.params if p.required]

    def get(self, name: str) -> ParamSpec | None:
        for param in self.params:
            if param.name == name:
                return param
        return None

    @cached_property
    def model(self) -> type[BaseModel]:
        """Pydantic model enforcing this parameter set.

        Property names are exposed as aliases over positional field names so
        that any JSON key (leading underscores, BaseModel attribute names)
        can be declared.
        """
        fields: dict[str, Any] = {}
        for index, param in enumerate(self.params):
            annotation = param.python_type
            if param.required:
                fields[f"p{index}"] = (
                    annotation,
                    Field(..., alias=param.name, description=param.description),
                )
            else:
                fields[f"p{index}"] = (
                    annotation | None if annotation is not Any else Any,
                    Field(default=None, alias=param.name, description=param.description),
                )

        return create_model(
            f"{_model_name(self.name)}Input",
            __config__=ConfigDict(extra="ignore", populate_by_name=False),
            **fields,
        )

    def validate(self, raw: Any) -> dict[str, Any]:
        """
        Validate and coerce raw call arguments.

        Absent optional parameters stay absent in the result.

        Raises:
            ValidationError: with one message per failing parameter
        """
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ValidationError(
                f"Input must be an object, got {type(raw).__name__}",
                errors=[f"input: expected object, got {type(raw).__name__}"],
            )

        try:
            instance = self.model.model_validate(raw)
        except PydanticValidationError as e:
            errors = [_format_error(err) for err in e.errors()]
            raise ValidationError(
                f"Input validation failed for '{self.name}': {'; '.join(errors)}",
                errors=errors,
            ) from e

        return instance.model_dump(by_alias=True, exclude_unset=True)

    def to_json_schema(self) -> dict[str, Any]:
        """Normalized JSON-schema object for LLM function calling."""
        schema: dict[str, Any] = {
            "type": "object",
            "properties": {p.name: p.to_json_schema() for p in self.params},
        }
        if self.required:
            schema["required"] = self.required
        return schema


def convert_schema(schema: dict[str, Any] | None, name: str = "primitive") -> ParameterSet:
    """
    Convert a declarative input schema into a ParameterSet.

    Args:
        schema: JSON-schema-like dict with ``properties`` and ``required``
        name: Owner name, used for the generated model and error messages

    Returns:
        ParameterSet with one ParamSpec per declared property

    Raises:
        ValidationError: If the schema itself is malformed
    """
    if schema is None:
        return ParameterSet(name=name)
    if not isinstance(schema, dict):
        raise ValidationError(f"Input schema for '{name}' must be an object")

    properties = schema.get("properties") or {}
    if not isinstance(properties, dict):
        raise ValidationError(f"Input schema for '{name}': 'properties' must be an object")

    required = schema.get("required") or []
    if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
        raise ValidationError(
            f"Input schema for '{name}': 'required' must be a list of property names"
        )

    params: list[ParamSpec] = []
    for prop_name, prop in properties.items():
        if not isinstance(prop, dict):
            raise ValidationError(
                f"Input schema for '{name}': property '{prop_name}' must be an object"
            )
        description = prop.get("description")
        params.append(
            ParamSpec(
                name=str(prop_name),
                type=param_type_for(prop.get("type")),
                required=prop_name in required,
                description=description if isinstance(description, str) else None,
            )
        )

    unknown_required = [r for r in required if r not in properties]
    if unknown_required:
        # Still enforced: a required-but-undeclared key is an opaque required param
        logger.debug(
            f"Schema for '{name}' requires undeclared properties: {unknown_required}",
            extra={"primitive_name": name},
        )
        params.extend(
            ParamSpec(name=r, type=ParamType.OPAQUE, required=True) for r in unknown_required
        )

    return ParameterSet(name=name, params=tuple(params))


def _model_name(name: str) -> str:
    return "".join(part.capitalize() for part in name.split("_") if part) or "Primitive"


def _format_error(err: Any) -> str:
    loc = ".".join(str(part) for part in err.get("loc", ())) or "input"
    return f"{loc}: {err.get('msg', 'invalid value')}"


__all__ = ["ParamSpec", "ParamType", "ParameterSet", "convert_schema", "param_type_for"]
