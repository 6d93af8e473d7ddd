"""Compile ``@param`` schema expressions into validation schemas.

Expressions are written in a small zod-like language, for example::

    z.string().min(3).max(20)
    z.object({ name: z.string(), tags: z.array(z.string()).optional() })
    v.Password().nullable()

They come from procedure comments stored in the database, so they are never
handed to ``eval``. A tokenizer and recursive-descent parser build a tiny AST
and the evaluator only dispatches to methods listed in each builder's
``dsl_methods`` table. The only names in scope are ``z`` (schema builders)
and ``v`` (registered custom validators).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from app.services.module_loader import iter_public_functions
from app.services.proc_errors import ProcedureCompileError
from app.services.proc_metadata import ParamTag
from app.services.schema_nodes import CustomNode, ObjectNode, SchemaNode, z

logger = logging.getLogger(__name__)

REQUEST_SECTIONS = ("querystring", "params", "body", "headers")
NO_OP_SOURCES = ("user", "request")
PARAMETER_SOURCES = REQUEST_SECTIONS + NO_OP_SOURCES

MAX_EXPRESSION_LENGTH = 10_000
MAX_NESTING_DEPTH = 32

TOKEN_PATTERN = re.compile(
    r"""
    (?P<space>\s+)
  | (?P<number>\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)
  | (?P<string>'(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*")
  | (?P<regex>/(?:\\.|[^/\\\n])+/[a-z]*)
  | (?P<name>[A-Za-z_$][\w$]*)
  | (?P<punct>[.()\[\]{},:\-])
    """,
    re.VERBOSE,
)
STRING_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"', "/": "/"}
CONSTANTS = {"true": True, "false": False, "null": None, "undefined": None}
REGEX_FLAGS = {"i": "i", "m": "m", "s": "s"}


class SchemaExpressionError(ValueError):
    def __init__(self, message: str, position: int | None = None) -> None:
        location = f" at position {position}" if position is not None else ""
        super().__init__(f"{message}{location}")
        self.position = position


class UnknownValidatorError(SchemaExpressionError):
    def __init__(self, validator: str, position: int | None = None) -> None:
        super().__init__(f"unknown custom validator '{validator}'", position)
        self.validator = validator


class ValidatorRegistryError(ValueError):
    pass


@dataclass(frozen=True)
class Token:
    kind: str
    value: Any
    position: int


@dataclass(frozen=True)
class Const:
    value: Any
    position: int


@dataclass(frozen=True)
class Name:
    id: str
    position: int


@dataclass(frozen=True)
class Attribute:
    target: Any
    name: str
    position: int


@dataclass(frozen=True)
class Call:
    func: Any
    args: tuple[Any, ...]
    position: int


@dataclass(frozen=True)
class ListExpr:
    items: tuple[Any, ...]
    position: int


@dataclass(frozen=True)
class DictExpr:
    items: tuple[tuple[str, Any], ...]
    position: int


class ValidatorRegistry:
    """Named zero-argument factories returning schema nodes."""

    def __init__(self) -> None:
        self._factories: dict[str, Callable[[], SchemaNode]] = {}

    def register(self, name: str, factory: Callable[[], SchemaNode]) -> None:
        if name in self._factories:
            raise ValidatorRegistryError(f"Duplicate custom validator '{name}'")
        try:
            node = factory()
        except Exception as exc:
            raise ValidatorRegistryError(f"Custom validator '{name}' failed its self-test: {exc}") from exc
        if not isinstance(node, SchemaNode):
            raise ValidatorRegistryError(
                f"Custom validator '{name}' must return a schema, got {type(node).__name__}"
            )
        self._factories[name] = factory
        logger.info("ValidatorRegistry.register: name=%s kind=%s", name, node.kind)

    def get(self, name: str) -> Callable[[], SchemaNode] | None:
        return self._factories.get(name)

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def __len__(self) -> int:
        return len(self._factories)


def load_validators(directory: str | Path | None) -> ValidatorRegistry:
    registry = ValidatorRegistry()
    if directory is None:
        return registry
    for name, factory, _path in iter_public_functions(directory, "procedure_validators"):
        registry.register(name, factory)
    logger.info("load_validators: dir=%s validators=%s", directory, len(registry))
    return registry


@dataclass(frozen=True)
class CompiledSchema:
    procedure: str
    sections: tuple[tuple[str, ObjectNode], ...]
    models: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def build(cls, procedure: str, sections: Mapping[str, ObjectNode]) -> CompiledSchema:
        ordered = tuple((name, sections[name]) for name in REQUEST_SECTIONS if name in sections)
        models = {name: node.build_model(f"{procedure}_{name}") for name, node in ordered}
        return cls(procedure=procedure, sections=ordered, models=models)

    def section(self, name: str) -> ObjectNode | None:
        return dict(self.sections).get(name)

    def validate(self, section: str, raw: Any) -> Any:
        """Validate one request section and return its JSON-compatible data.

        Raises ``pydantic.ValidationError`` when the input does not match.
        """
        model = self.models.get(section)
        if model is None:
            return raw
        return dict(self.sections)[section].dump(model.model_validate(raw))

    def json_schema(self) -> dict[str, dict[str, Any]]:
        return {name: node.json_schema() for name, node in self.sections}


def compile_expression(expression: str, validators: ValidatorRegistry | None = None) -> SchemaNode:
    source = expression.strip()
    if not source:
        return z.string()
    if len(source) > MAX_EXPRESSION_LENGTH:
        raise SchemaExpressionError("expression is too long")

    tree = _Parser(source).parse()
    value = _Evaluator(validators or ValidatorRegistry()).evaluate(tree)
    if not isinstance(value, SchemaNode):
        raise SchemaExpressionError(f"expression must produce a schema, got {_describe(value)}")
    return value


def compile_param_schema(
    procedure: str, tag: ParamTag, validators: ValidatorRegistry | None = None
) -> SchemaNode:
    try:
        return compile_expression(tag.expression, validators)
    except SchemaExpressionError as exc:
        raise ProcedureCompileError(
            procedure, f"invalid schema expression: {exc}", parameter=tag.name
        ) from exc


def compile_request_schema(
    procedure: str, param_tags: list[ParamTag], validators: ValidatorRegistry | None = None
) -> CompiledSchema:
    sections: dict[str, ObjectNode] = {}
    for tag in param_tags:
        if tag.source not in PARAMETER_SOURCES:
            raise ProcedureCompileError(
                procedure,
                f"unknown parameter source '{tag.source}' "
                f"(expected one of: {', '.join(PARAMETER_SOURCES)})",
                parameter=tag.name,
            )

        node = compile_param_schema(procedure, tag, validators)
        if tag.source in NO_OP_SOURCES:
            continue

        alias = tag.alias.lower() if tag.source == "headers" else tag.alias
        sections[tag.source] = sections.get(tag.source, ObjectNode()).extend({alias: node})

    logger.info(
        "compile_request_schema: procedure=%s sections=%s",
        procedure,
        ",".join(sections) or "-",
    )
    return CompiledSchema.build(procedure, sections)


def tokenize(source: str) -> list[Token]:
    tokens: list[Token] = []
    position = 0
    while position < len(source):
        match = TOKEN_PATTERN.match(source, position)
        if match is None:
            raise SchemaExpressionError(f"unexpected character {source[position]!r}", position)
        kind = match.lastgroup
        text = match.group()
        if kind == "number":
            value: Any = float(text) if any(ch in text for ch in ".eE") else int(text)
            tokens.append(Token("number", value, position))
        elif kind == "string":
            tokens.append(Token("string", _unescape(text[1:-1], position), position))
        elif kind == "regex":
            tokens.append(Token("regex", _regex_literal(text, position), position))
        elif kind in ("name", "punct"):
            tokens.append(Token(kind, text, position))
        position = match.end()
    tokens.append(Token("end", None, position))
    return tokens


def _unescape(body: str, position: int) -> str:
    chars: list[str] = []
    index = 0
    while index < len(body):
        char = body[index]
        if char == "\\":
            index += 1
            escaped = body[index]
            if escaped not in STRING_ESCAPES:
                raise SchemaExpressionError(f"unsupported escape \\{escaped}", position + index)
            chars.append(STRING_ESCAPES[escaped])
        else:
            chars.append(char)
        index += 1
    return "".join(chars)


def _regex_literal(text: str, position: int) -> str:
    closing = text.rindex("/")
    pattern = text[1:closing]
    flags = text[closing + 1 :]
    unknown = set(flags) - set(REGEX_FLAGS)
    if unknown:
        raise SchemaExpressionError(f"unsupported regex flags {''.join(sorted(unknown))}", position)
    if flags:
        pattern = f"(?{''.join(sorted(set(flags)))}){pattern}"
    try:
        re.compile(pattern)
    except re.error as exc:
        raise SchemaExpressionError(f"invalid regex: {exc}", position) from exc
    return pattern


class _Parser:
    def __init__(self, source: str) -> None:
        self._tokens = tokenize(source)
        self._index = 0
        self._depth = 0

    def parse(self) -> Any:
        node = self._expression()
        token = self._peek()
        if token.kind != "end":
            raise SchemaExpressionError(f"unexpected {token.value!r}", token.position)
        return node

    def _peek(self) -> Token:
        return self._tokens[self._index]

    def _next(self) -> Token:
        token = self._tokens[self._index]
        if token.kind != "end":
            self._index += 1
        return token

    def _accept(self, value: str) -> bool:
        token = self._peek()
        if token.kind == "punct" and token.value == value:
            self._index += 1
            return True
        return False

    def _expect(self, value: str) -> Token:
        token = self._next()
        if token.kind != "punct" or token.value != value:
            found = "end of expression" if token.kind == "end" else repr(token.value)
            raise SchemaExpressionError(f"expected {value!r}, found {found}", token.position)
        return token

    def _expression(self) -> Any:
        self._depth += 1
        if self._depth > MAX_NESTING_DEPTH:
            raise SchemaExpressionError("expression is nested too deeply", self._peek().position)
        node = self._primary()
        while True:
            token = self._peek()
            if self._accept("."):
                name = self._next()
                if name.kind != "name":
                    raise SchemaExpressionError("expected a name after '.'", name.position)
                node = Attribute(node, name.value, name.position)
            elif self._accept("("):
                node = Call(node, self._sequence(")"), token.position)
            else:
                break
        self._depth -= 1
        return node

    def _sequence(self, closing: str) -> tuple[Any, ...]:
        items: list[Any] = []
        while not self._accept(closing):
            items.append(self._expression())
            if not self._accept(","):
                self._expect(closing)
                break
        return tuple(items)

    def _primary(self) -> Any:
        token = self._next()
        if token.kind in ("number", "string", "regex"):
            return Const(token.value, token.position)
        if token.kind == "name":
            return Name(token.value, token.position)
        if token.kind == "punct":
            if token.value == "-":
                number = self._next()
                if number.kind != "number":
                    raise SchemaExpressionError("expected a number after '-'", number.position)
                return Const(-number.value, token.position)
            if token.value == "(":
                node = self._expression()
                self._expect(")")
                return node
            if token.value == "[":
                return ListExpr(self._sequence("]"), token.position)
            if token.value == "{":
                return DictExpr(self._object_items(), token.position)
        found = "end of expression" if token.kind == "end" else repr(token.value)
        raise SchemaExpressionError(f"unexpected {found}", token.position)

    def _object_items(self) -> tuple[tuple[str, Any], ...]:
        items: list[tuple[str, Any]] = []
        while not self._accept("}"):
            key = self._next()
            if key.kind not in ("name", "string"):
                raise SchemaExpressionError("expected an object key", key.position)
            self._expect(":")
            items.append((key.value, self._expression()))
            if not self._accept(","):
                self._expect("}")
                break
        return tuple(items)


@dataclass(frozen=True)
class _BoundMethod:
    target: Any
    name: str
    python_name: str

    def __call__(self, *args: Any) -> Any:
        return getattr(self.target, self.python_name)(*args)


@dataclass(frozen=True)
class _ValidatorCall:
    name: str
    factory: Callable[[], SchemaNode]

    def __call__(self, *args: Any) -> Any:
        if args:
            raise TypeError(f"custom validator '{self.name}' takes no arguments")
        return CustomNode(name=self.name, inner=self.factory())


class _ValidatorNamespace:
    def __init__(self, registry: ValidatorRegistry) -> None:
        self.registry = registry


class _Evaluator:
    def __init__(self, validators: ValidatorRegistry) -> None:
        self._scope: dict[str, Any] = {"z": z, "v": _ValidatorNamespace(validators)}

    def evaluate(self, node: Any) -> Any:
        if isinstance(node, Const):
            return node.value
        if isinstance(node, Name):
            if node.id in CONSTANTS:
                return CONSTANTS[node.id]
            if node.id in self._scope:
                return self._scope[node.id]
            raise SchemaExpressionError(f"unknown name '{node.id}'", node.position)
        if isinstance(node, ListExpr):
            return [self.evaluate(item) for item in node.items]
        if isinstance(node, DictExpr):
            return {key: self.evaluate(value) for key, value in node.items}
        if isinstance(node, Attribute):
            return self._attribute(self.evaluate(node.target), node.name, node.position)
        if isinstance(node, Call):
            return self._call(node)
        raise SchemaExpressionError("unsupported expression")

    def _attribute(self, target: Any, name: str, position: int) -> Any:
        if isinstance(target, _ValidatorNamespace):
            factory = target.registry.get(name)
            if factory is None:
                raise UnknownValidatorError(name, position)
            return _ValidatorCall(name, factory)

        methods: dict[str, str] = getattr(type(target), "dsl_methods", {})
        if name in methods:
            return _BoundMethod(target, name, methods[name])
        if name in getattr(type(target), "dsl_attributes", ()):
            return getattr(target, name)
        raise SchemaExpressionError(f"'{name}' is not available on {_describe(target)}", position)

    def _call(self, node: Call) -> Any:
        func = self.evaluate(node.func)
        if not isinstance(func, (_BoundMethod, _ValidatorCall)):
            raise SchemaExpressionError(f"{_describe(func)} is not callable", node.position)
        args = [self.evaluate(arg) for arg in node.args]
        try:
            return func(*args)
        except (TypeError, ValueError, re.error) as exc:
            raise SchemaExpressionError(f"{func.name}(): {exc}", node.position) from exc


def _describe(value: Any) -> str:
    if isinstance(value, SchemaNode):
        return f"{value.kind} schema"
    if isinstance(value, (_BoundMethod, _ValidatorCall)):
        return f"'{value.name}'"
    if value is None:
        return "null"
    return type(value).__name__
