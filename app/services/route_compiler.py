"""Turn catalog procedures into immutable route specifications.

The procedure name carries the HTTP method and path::

    api_get_hello__world               -> GET  /hello/world
    api_post_user.id.__update_profile  -> POST /user/:id/update-profile

and the documentation comment carries parameter bindings, guards and hooks.
Every problem found here is fatal: a route table is either complete or not
built at all.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from app.services.auth_context import build_auth_context_setter
from app.services.guards import DEFAULT_GUARDS, GuardFactory
from app.services.hook_registry import HOOK_PHASES, HookRegistry, normalize_phase
from app.services.proc_database import Procedure
from app.services.proc_errors import ProcedureCompileError
from app.services.proc_invoker import Handler, ParameterBinding, make_handler
from app.services.proc_metadata import (
    GuardTag,
    HooksTag,
    ParamTag,
    extract_tags,
    interpret_tags,
)
from app.services.schema_compiler import (
    CompiledSchema,
    ValidatorRegistry,
    compile_request_schema,
)

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")
PATH_PARAM_PATTERN = re.compile(r"\.(\w+)\.")

Step = Callable[..., Any]


@dataclass(frozen=True)
class CompileContext:
    prefix: str = "api_"
    guards: Mapping[str, GuardFactory] = field(default_factory=lambda: dict(DEFAULT_GUARDS))
    hooks: HookRegistry = field(default_factory=HookRegistry)
    validators: ValidatorRegistry = field(default_factory=ValidatorRegistry)
    auth_context: Step = field(default_factory=lambda: build_auth_context_setter(None))
    strict_metadata: bool = True


@dataclass(frozen=True)
class RouteSpec:
    """Compiled route; callables are excluded from equality."""

    procedure: Procedure
    method: str
    path: str
    bindings: tuple[ParameterBinding, ...]
    schema: CompiledSchema
    guard_tags: tuple[GuardTag, ...] = ()
    hook_tags: tuple[HooksTag, ...] = ()
    pre_validation: tuple[Step, ...] = field(default=(), compare=False, repr=False)
    hooks: Mapping[str, tuple[Step, ...]] = field(default_factory=dict, compare=False, repr=False)
    handler: Handler | None = field(default=None, compare=False, repr=False)

    def hooks_for(self, phase: str) -> tuple[Step, ...]:
        return self.hooks.get(phase, ())

    @property
    def path_parameters(self) -> list[str]:
        return [segment[1:] for segment in self.path.split("/") if segment.startswith(":")]


@dataclass(frozen=True)
class RouteTable:
    routes: tuple[RouteSpec, ...] = ()

    def get(self, procedure_name: str) -> RouteSpec | None:
        for route in self.routes:
            if route.procedure.name == procedure_name:
                return route
        return None

    def __iter__(self) -> Iterator[RouteSpec]:
        return iter(self.routes)

    def __len__(self) -> int:
        return len(self.routes)


def parse_procedure_name(name: str, prefix: str = "api_") -> tuple[str, str]:
    if not name.startswith(prefix):
        raise ProcedureCompileError(name, f"name does not start with '{prefix}'")

    method_text, _, route_text = name[len(prefix) :].partition("_")
    method = method_text.upper()
    if method not in HTTP_METHODS:
        raise ProcedureCompileError(
            name, f"'{method_text}' is not an HTTP method (expected one of: {', '.join(HTTP_METHODS)})"
        )

    segments: list[str] = []
    for chunk in route_text.split("__"):
        for index, piece in enumerate(PATH_PARAM_PATTERN.split(chunk)):
            if index % 2:
                segments.append(f":{piece}")
            elif piece:
                segments.append(piece.replace("_", "-"))
    return method, "/" + "/".join(segments)


def compile_route(procedure: Procedure, context: CompileContext) -> RouteSpec:
    method, path = parse_procedure_name(procedure.name, context.prefix)
    tags = interpret_tags(
        procedure.name,
        extract_tags(procedure.name, procedure.definition, strict=context.strict_metadata),
    )
    param_tags = [tag for tag in tags if isinstance(tag, ParamTag)]
    guard_tags = tuple(tag for tag in tags if isinstance(tag, GuardTag))
    hook_tags = tuple(tag for tag in tags if isinstance(tag, HooksTag))

    bindings = _compile_bindings(procedure, param_tags)
    schema = compile_request_schema(procedure.name, param_tags, context.validators)
    guards = _compile_guards(procedure, guard_tags, context.guards)
    hooks = _compile_hooks(procedure, hook_tags, context.hooks)

    logger.info(
        "compile_route: procedure=%s method=%s path=%s params=%s guards=%s hooks=%s",
        procedure.name,
        method,
        path,
        len(bindings),
        len(guards),
        ",".join(hooks) or "-",
    )
    return RouteSpec(
        procedure=procedure,
        method=method,
        path=path,
        bindings=bindings,
        schema=schema,
        guard_tags=guard_tags,
        hook_tags=hook_tags,
        pre_validation=(context.auth_context, *guards),
        hooks=hooks,
        handler=make_handler(procedure, bindings),
    )


def compile_routes(procedures: Iterable[Procedure], context: CompileContext) -> RouteTable:
    routes: list[RouteSpec] = []
    seen: dict[tuple[str, str], str] = {}
    for procedure in procedures:
        route = compile_route(procedure, context)
        key = (route.method, route.path)
        if key in seen:
            raise ProcedureCompileError(
                procedure.name,
                f"route {route.method} {route.path} is already served by '{seen[key]}'",
            )
        seen[key] = procedure.name
        routes.append(route)

    logger.info("compile_routes: routes=%s", len(routes))
    return RouteTable(routes=tuple(routes))


def _compile_bindings(
    procedure: Procedure, param_tags: Sequence[ParamTag]
) -> tuple[ParameterBinding, ...]:
    by_name: dict[str, ParameterBinding] = {}
    for tag in param_tags:
        if tag.name in by_name:
            raise ProcedureCompileError(procedure.name, "duplicate @param", parameter=tag.name)
        if tag.name not in procedure.parameters:
            logger.warning(
                "compile_bindings: procedure=%s undeclared_param=%s", procedure.name, tag.name
            )
        by_name[tag.name] = ParameterBinding(
            name=tag.name, alias=tag.alias, get_from=tag.source, description=tag.expression
        )

    for parameter in procedure.parameters:
        if parameter not in by_name:
            raise ProcedureCompileError(
                procedure.name, "no @param binding for declared parameter", parameter=parameter
            )
    return tuple(by_name[parameter] for parameter in procedure.parameters)


def _compile_guards(
    procedure: Procedure, guard_tags: Sequence[GuardTag], factories: Mapping[str, GuardFactory]
) -> list[Step]:
    guards: list[Step] = []
    for tag in guard_tags:
        factory = factories.get(tag.name)
        if factory is None:
            raise ProcedureCompileError(procedure.name, "guard is not registered", guard=tag.name)
        try:
            guards.append(factory(list(tag.args)))
        except (TypeError, ValueError) as exc:
            raise ProcedureCompileError(procedure.name, str(exc), guard=tag.name) from exc
    return guards


def _compile_hooks(
    procedure: Procedure, hook_tags: Sequence[HooksTag], registry: HookRegistry
) -> dict[str, tuple[Step, ...]]:
    hooks: dict[str, tuple[Step, ...]] = {}
    for tag in hook_tags:
        phase = normalize_phase(tag.phase)
        if phase not in HOOK_PHASES:
            raise ProcedureCompileError(
                procedure.name,
                f"unknown hook phase '{tag.phase}' (expected one of: {', '.join(HOOK_PHASES)})",
            )
        if phase in hooks:
            raise ProcedureCompileError(procedure.name, f"hook phase '{phase}' declared twice")
        if not tag.functions:
            raise ProcedureCompileError(procedure.name, f"hook phase '{phase}' lists no functions")

        functions: list[Step] = []
        for name in tag.functions:
            func = registry.get(name)
            if func is None:
                raise ProcedureCompileError(procedure.name, "hook function is not registered", hook=name)
            functions.append(func)
        hooks[phase] = tuple(functions)
    return hooks
