"""Immutable validation schema nodes and the ``z`` builder namespace.

Nodes describe a request field declaratively. ``annotation()`` renders a
pydantic type used for validation and ``json_schema()`` renders the fragment
published in the OpenAPI document. Every modifier returns a new node, so a
node can be shared between routes and requests.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Annotated, Any, ClassVar, Literal, Optional, Union
from uuid import UUID

from pydantic import (
    AfterValidator,
    AnyUrl,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    FiniteFloat,
    TypeAdapter,
    ValidationError,
    WrapValidator,
    create_model,
)
from pydantic_core import PydanticCustomError

FORMAT_ADAPTERS: dict[str, TypeAdapter[Any]] = {
    "email": TypeAdapter(EmailStr),
    "url": TypeAdapter(AnyUrl),
    "uuid": TypeAdapter(UUID),
    "datetime": TypeAdapter(datetime),
}

COMMON_DSL_METHODS = {
    "optional": "optional",
    "nullable": "nullable",
    "nullish": "nullish",
    "default": "default",
    "describe": "describe",
}


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


@dataclass(frozen=True)
class Step:
    kind: str
    value: Any = None
    message: str | None = None


@dataclass(frozen=True)
class SchemaNode:
    is_optional: bool = False
    is_nullable: bool = False
    default_value: Any = MISSING
    description: str | None = None
    steps: tuple[Step, ...] = ()

    kind: ClassVar[str] = "node"
    dsl_methods: ClassVar[dict[str, str]] = COMMON_DSL_METHODS

    def optional(self) -> SchemaNode:
        return replace(self, is_optional=True)

    def nullable(self) -> SchemaNode:
        return replace(self, is_nullable=True)

    def nullish(self) -> SchemaNode:
        return replace(self, is_optional=True, is_nullable=True)

    def default(self, value: Any) -> SchemaNode:
        return replace(self, default_value=value)

    def describe(self, text: str) -> SchemaNode:
        return replace(self, description=text)

    @property
    def is_required(self) -> bool:
        return not self.is_optional and self.effective_default() is MISSING

    def effective_default(self) -> Any:
        return self.default_value

    def _step(self, kind: str, value: Any = None, message: str | None = None) -> SchemaNode:
        return replace(self, steps=self.steps + (Step(kind, value, message),))

    def base_annotation(self) -> Any:
        return Any

    def base_json_schema(self) -> dict[str, Any]:
        return {}

    def annotation(self) -> Any:
        annotation = self.base_annotation()
        validators = [AfterValidator(_step_runner(step)) for step in self.steps]
        if validators:
            annotation = Annotated[(annotation, *validators)]
        if self.is_nullable:
            annotation = Optional[annotation]
        return annotation

    def field_definition(self, alias: str) -> tuple[Any, Any]:
        default = self.effective_default()
        if default is MISSING:
            default = ... if self.is_required else None
        return self.annotation(), Field(default, alias=alias, description=self.description)

    def apply_defaults(self, value: Any) -> Any:
        return value

    def json_schema(self) -> dict[str, Any]:
        schema = self.base_json_schema()
        for step in self.steps:
            schema.update(_step_json_schema(self.kind, step))
        if self.is_nullable:
            schema = {"anyOf": [schema, {"type": "null"}]}
        if self.description:
            schema["description"] = self.description
        if self.default_value is not MISSING:
            schema["default"] = self.default_value
        return schema


@dataclass(frozen=True)
class AnyNode(SchemaNode):
    kind: ClassVar[str] = "any"


@dataclass(frozen=True)
class StringNode(SchemaNode):
    coerce: bool = False

    kind: ClassVar[str] = "string"
    dsl_methods: ClassVar[dict[str, str]] = {
        **COMMON_DSL_METHODS,
        "min": "min",
        "max": "max",
        "length": "length",
        "nonempty": "nonempty",
        "regex": "regex",
        "email": "email",
        "url": "url",
        "uuid": "uuid",
        "datetime": "datetime",
        "trim": "trim",
        "toLowerCase": "to_lower_case",
        "toUpperCase": "to_upper_case",
    }

    def min(self, value: int, message: str | None = None) -> StringNode:
        return self._step("min_length", _as_int(value), message)

    def max(self, value: int, message: str | None = None) -> StringNode:
        return self._step("max_length", _as_int(value), message)

    def length(self, value: int, message: str | None = None) -> StringNode:
        return self._step("length", _as_int(value), message)

    def nonempty(self, message: str | None = None) -> StringNode:
        return self._step("min_length", 1, message)

    def regex(self, pattern: str, message: str | None = None) -> StringNode:
        re.compile(pattern)
        return self._step("pattern", pattern, message)

    def email(self, message: str | None = None) -> StringNode:
        return self._step("email", None, message)

    def url(self, message: str | None = None) -> StringNode:
        return self._step("url", None, message)

    def uuid(self, message: str | None = None) -> StringNode:
        return self._step("uuid", None, message)

    def datetime(self, message: str | None = None) -> StringNode:
        return self._step("datetime", None, message)

    def trim(self) -> StringNode:
        return self._step("trim")

    def to_lower_case(self) -> StringNode:
        return self._step("lower")

    def to_upper_case(self) -> StringNode:
        return self._step("upper")

    def base_annotation(self) -> Any:
        if self.coerce:
            return Annotated[str, BeforeValidator(_coerce_string)]
        return str

    def base_json_schema(self) -> dict[str, Any]:
        return {"type": "string"}


@dataclass(frozen=True)
class NumberNode(SchemaNode):
    integer: bool = False
    coerce: bool = False

    kind: ClassVar[str] = "number"
    dsl_methods: ClassVar[dict[str, str]] = {
        **COMMON_DSL_METHODS,
        "int": "int",
        "min": "min",
        "max": "max",
        "gt": "gt",
        "gte": "gte",
        "lt": "lt",
        "lte": "lte",
        "positive": "positive",
        "nonnegative": "nonnegative",
        "negative": "negative",
        "nonpositive": "nonpositive",
    }

    def int(self) -> NumberNode:
        return replace(self, integer=True)

    def gt(self, value: float, message: str | None = None) -> NumberNode:
        return self._step("gt", _as_number(value), message)

    def gte(self, value: float, message: str | None = None) -> NumberNode:
        return self._step("gte", _as_number(value), message)

    def lt(self, value: float, message: str | None = None) -> NumberNode:
        return self._step("lt", _as_number(value), message)

    def lte(self, value: float, message: str | None = None) -> NumberNode:
        return self._step("lte", _as_number(value), message)

    def min(self, value: float, message: str | None = None) -> NumberNode:
        return self.gte(value, message)

    def max(self, value: float, message: str | None = None) -> NumberNode:
        return self.lte(value, message)

    def positive(self, message: str | None = None) -> NumberNode:
        return self.gt(0, message)

    def nonnegative(self, message: str | None = None) -> NumberNode:
        return self.gte(0, message)

    def negative(self, message: str | None = None) -> NumberNode:
        return self.lt(0, message)

    def nonpositive(self, message: str | None = None) -> NumberNode:
        return self.lte(0, message)

    def base_annotation(self) -> Any:
        # strings are accepted by pydantic's lax mode, so coerce needs no extra step
        if self.integer:
            return int
        return Annotated[FiniteFloat, AfterValidator(_integral_to_int)]

    def base_json_schema(self) -> dict[str, Any]:
        return {"type": "integer" if self.integer else "number"}


@dataclass(frozen=True)
class BooleanNode(SchemaNode):
    coerce: bool = False

    kind: ClassVar[str] = "boolean"

    def base_annotation(self) -> Any:
        return bool

    def base_json_schema(self) -> dict[str, Any]:
        return {"type": "boolean"}


@dataclass(frozen=True)
class LiteralNode(SchemaNode):
    value: Any = None

    kind: ClassVar[str] = "literal"

    def base_annotation(self) -> Any:
        return Literal[self.value]

    def base_json_schema(self) -> dict[str, Any]:
        return {"const": self.value}


@dataclass(frozen=True)
class EnumNode(SchemaNode):
    values: tuple[Any, ...] = ()

    kind: ClassVar[str] = "enum"

    def base_annotation(self) -> Any:
        return Literal[self.values]

    def base_json_schema(self) -> dict[str, Any]:
        return {"enum": list(self.values)}


@dataclass(frozen=True)
class ArrayNode(SchemaNode):
    item: SchemaNode = field(default_factory=AnyNode)

    kind: ClassVar[str] = "array"
    dsl_methods: ClassVar[dict[str, str]] = {
        **COMMON_DSL_METHODS,
        "min": "min",
        "max": "max",
        "length": "length",
        "nonempty": "nonempty",
    }

    def min(self, value: int, message: str | None = None) -> ArrayNode:
        return self._step("min_length", _as_int(value), message)

    def max(self, value: int, message: str | None = None) -> ArrayNode:
        return self._step("max_length", _as_int(value), message)

    def length(self, value: int, message: str | None = None) -> ArrayNode:
        return self._step("length", _as_int(value), message)

    def nonempty(self, message: str | None = None) -> ArrayNode:
        return self._step("min_length", 1, message)

    def base_annotation(self) -> Any:
        return list[self.item.annotation()]

    def apply_defaults(self, value: Any) -> Any:
        if isinstance(value, list):
            return [self.item.apply_defaults(item) for item in value]
        return value

    def base_json_schema(self) -> dict[str, Any]:
        return {"type": "array", "items": self.item.json_schema()}


@dataclass(frozen=True)
class ObjectNode(SchemaNode):
    fields: tuple[tuple[str, SchemaNode], ...] = ()

    kind: ClassVar[str] = "object"
    dsl_methods: ClassVar[dict[str, str]] = {**COMMON_DSL_METHODS, "extend": "extend"}

    @property
    def shape(self) -> dict[str, SchemaNode]:
        return dict(self.fields)

    def extend(self, shape: Mapping[str, SchemaNode]) -> ObjectNode:
        merged = self.shape
        merged.update(_check_shape(shape))
        return replace(self, fields=tuple(merged.items()))

    def build_model(self, model_name: str = "Object") -> Any:
        definitions = {
            f"field_{index}": node.field_definition(alias)
            for index, (alias, node) in enumerate(self.fields)
        }
        return create_model(model_name, __config__=ConfigDict(extra="ignore"), **definitions)

    def dump(self, instance: Any) -> dict[str, Any]:
        """Dump a validated model, leaving out optional keys the client did not send.

        Declared defaults are filled back in, nested objects included.
        """
        data = instance.model_dump(mode="json", by_alias=True, exclude_unset=True)
        return self.apply_defaults(data)

    def apply_defaults(self, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        for alias, node in self.fields:
            if alias in value:
                value[alias] = node.apply_defaults(value[alias])
                continue
            default = node.effective_default()
            if default is not MISSING:
                value[alias] = node.apply_defaults(copy.deepcopy(default))
        return value

    def base_annotation(self) -> Any:
        return self.build_model()

    def base_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {
            "type": "object",
            "properties": {alias: node.json_schema() for alias, node in self.fields},
        }
        required = [alias for alias, node in self.fields if node.is_required]
        if required:
            schema["required"] = required
        return schema


@dataclass(frozen=True)
class UnionNode(SchemaNode):
    options: tuple[SchemaNode, ...] = ()

    kind: ClassVar[str] = "union"

    def base_annotation(self) -> Any:
        # one error at the field itself instead of one per branch
        return Annotated[
            Union[tuple(option.annotation() for option in self.options)],
            WrapValidator(_collapse_union_errors),
        ]

    def base_json_schema(self) -> dict[str, Any]:
        return {"anyOf": [option.json_schema() for option in self.options]}


@dataclass(frozen=True)
class CustomNode(SchemaNode):
    name: str = ""
    inner: SchemaNode = field(default_factory=AnyNode)

    kind: ClassVar[str] = "custom"

    def base_annotation(self) -> Any:
        return self.inner.annotation()

    def apply_defaults(self, value: Any) -> Any:
        return self.inner.apply_defaults(value)

    def base_json_schema(self) -> dict[str, Any]:
        schema = self.inner.json_schema()
        schema.setdefault("title", self.name)
        return schema

    @property
    def is_required(self) -> bool:
        return super().is_required and self.inner.is_required

    def effective_default(self) -> Any:
        if self.default_value is not MISSING:
            return self.default_value
        return self.inner.effective_default()


class CoerceBuilder:
    dsl_methods: ClassVar[dict[str, str]] = {
        "string": "string",
        "number": "number",
        "boolean": "boolean",
    }

    def string(self) -> StringNode:
        return StringNode(coerce=True)

    def number(self) -> NumberNode:
        return NumberNode(coerce=True)

    def boolean(self) -> BooleanNode:
        return BooleanNode(coerce=True)


class SchemaBuilder:
    """The ``z`` namespace, usable from Python and from schema expressions."""

    dsl_methods: ClassVar[dict[str, str]] = {
        "string": "string",
        "number": "number",
        "boolean": "boolean",
        "any": "any",
        "literal": "literal",
        "enum": "enum",
        "array": "array",
        "object": "object",
        "union": "union",
        "optional": "optional",
        "nullable": "nullable",
    }
    dsl_attributes: ClassVar[frozenset[str]] = frozenset({"coerce"})

    def __init__(self) -> None:
        self.coerce = CoerceBuilder()

    def string(self) -> StringNode:
        return StringNode()

    def number(self) -> NumberNode:
        return NumberNode()

    def boolean(self) -> BooleanNode:
        return BooleanNode()

    def any(self) -> AnyNode:
        return AnyNode()

    def literal(self, value: Any) -> LiteralNode:
        if not isinstance(value, (str, int, float, bool)) and value is not None:
            raise TypeError("literal() accepts a string, number, boolean or null")
        return LiteralNode(value=value)

    def enum(self, values: Sequence[Any]) -> EnumNode:
        if isinstance(values, (str, bytes)) or not values:
            raise TypeError("enum() needs a non-empty list of values")
        return EnumNode(values=tuple(values))

    def array(self, item: SchemaNode) -> ArrayNode:
        return ArrayNode(item=_check_node(item, "array()"))

    def object(self, shape: Mapping[str, SchemaNode]) -> ObjectNode:
        return ObjectNode(fields=tuple(_check_shape(shape).items()))

    def union(self, options: Sequence[SchemaNode]) -> UnionNode:
        if isinstance(options, (str, bytes)) or len(options) < 2:
            raise TypeError("union() needs a list of at least two schemas")
        return UnionNode(options=tuple(_check_node(option, "union()") for option in options))

    def optional(self, node: SchemaNode) -> SchemaNode:
        return _check_node(node, "optional()").optional()

    def nullable(self, node: SchemaNode) -> SchemaNode:
        return _check_node(node, "nullable()").nullable()


z = SchemaBuilder()


def _check_node(value: Any, where: str) -> SchemaNode:
    if not isinstance(value, SchemaNode):
        raise TypeError(f"{where} expects a schema, got {type(value).__name__}")
    return value


def _check_shape(shape: Mapping[str, SchemaNode]) -> dict[str, SchemaNode]:
    if not isinstance(shape, Mapping):
        raise TypeError("object() expects a mapping of field schemas")
    return {str(key): _check_node(value, f"object() field '{key}'") for key, value in shape.items()}


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise TypeError(f"expected an integer, got {value!r}")
    return int(value)


def _as_number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected a number, got {value!r}")
    return value


def _integral_to_int(value: float) -> int | float:
    return int(value) if value.is_integer() else value


def _collapse_union_errors(value: Any, handler: Callable[[Any], Any]) -> Any:
    try:
        return handler(value)
    except ValidationError as exc:
        raise PydanticCustomError(
            "invalid_union", "Input does not match any allowed schema"
        ) from exc


def _coerce_string(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value).lower() if isinstance(value, bool) else str(value)
    return value


def _step_runner(step: Step) -> Callable[[Any], Any]:
    def run(value: Any) -> Any:
        return _apply_step(step, value)

    return run


def _apply_step(step: Step, value: Any) -> Any:
    kind = step.kind
    if kind == "trim":
        return value.strip()
    if kind == "lower":
        return value.lower()
    if kind == "upper":
        return value.upper()
    if kind == "min_length" and len(value) < step.value:
        _fail("too_short", step, f"Should have at least {step.value} items or characters")
    elif kind == "max_length" and len(value) > step.value:
        _fail("too_long", step, f"Should have at most {step.value} items or characters")
    elif kind == "length" and len(value) != step.value:
        _fail("wrong_length", step, f"Should have exactly {step.value} items or characters")
    elif kind == "pattern" and re.search(step.value, value) is None:
        _fail("string_pattern_mismatch", step, f"String should match pattern '{step.value}'")
    elif kind in FORMAT_ADAPTERS and not _matches_format(kind, value):
        _fail(f"invalid_{kind}", step, f"Invalid {kind}")
    elif kind == "gt" and not value > step.value:
        _fail("greater_than", step, f"Input should be greater than {step.value}")
    elif kind == "gte" and not value >= step.value:
        _fail("greater_than_equal", step, f"Input should be greater than or equal to {step.value}")
    elif kind == "lt" and not value < step.value:
        _fail("less_than", step, f"Input should be less than {step.value}")
    elif kind == "lte" and not value <= step.value:
        _fail("less_than_equal", step, f"Input should be less than or equal to {step.value}")
    return value


def _fail(error_type: str, step: Step, default_message: str) -> None:
    raise PydanticCustomError(error_type, step.message or default_message)


def _matches_format(kind: str, value: str) -> bool:
    try:
        FORMAT_ADAPTERS[kind].validate_python(value)
    except ValidationError:
        return False
    return True


def _step_json_schema(kind: str, step: Step) -> dict[str, Any]:
    items = kind == "array"
    if step.kind == "min_length":
        return {"minItems" if items else "minLength": step.value}
    if step.kind == "max_length":
        return {"maxItems" if items else "maxLength": step.value}
    if step.kind == "length":
        if items:
            return {"minItems": step.value, "maxItems": step.value}
        return {"minLength": step.value, "maxLength": step.value}
    if step.kind == "pattern":
        return {"pattern": step.value}
    if step.kind in ("email", "uuid"):
        return {"format": step.kind}
    if step.kind == "url":
        return {"format": "uri"}
    if step.kind == "datetime":
        return {"format": "date-time"}
    if step.kind == "gt":
        return {"exclusiveMinimum": step.value}
    if step.kind == "gte":
        return {"minimum": step.value}
    if step.kind == "lt":
        return {"exclusiveMaximum": step.value}
    if step.kind == "lte":
        return {"maximum": step.value}
    return {}
