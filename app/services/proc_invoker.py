"""Bind request fields to procedure arguments and shape the procedure result.

A procedure may describe its own response by returning a first result set
whose first row carries a truthy ``#RESULT#`` column::

    SELECT 1 AS `#RESULT#`, 201 AS status, 'object, rows' AS `schema`;
    SELECT * FROM users WHERE id = p_id;
    SELECT * FROM user_roles WHERE user_id = p_id;

That envelope is consumed and the remaining result sets are shaped by the
comma separated ``schema`` descriptors: ``object`` unwraps the first row,
anything else keeps all rows.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from app.services.proc_database import CallStatus, Procedure, ProcedureDatabase
from app.services.proc_errors import BindingError, ProcedureCallError

if TYPE_CHECKING:
    from app.services.route_compiler import RouteSpec

logger = logging.getLogger(__name__)

SENTINEL_COLUMN = "#RESULT#"
OBJECT_DESCRIPTOR = "object"


@dataclass(frozen=True)
class ParameterBinding:
    name: str
    alias: str
    get_from: str
    description: str = ""


@dataclass(frozen=True)
class RequestFields:
    querystring: Mapping[str, Any] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)
    body: Any = None
    headers: Mapping[str, Any] = field(default_factory=dict)
    user: Mapping[str, Any] | None = None
    request: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InvocationResult:
    status: int
    payload: Any


@dataclass(frozen=True)
class ResultEnvelope:
    status: int | None = None
    error: bool = False
    success: bool = False
    message: str | None = None
    schema: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ResultEnvelope:
        status = row.get("status")
        schema = row.get("schema")
        message = row.get("message")
        return cls(
            status=int(status) if status else None,
            error=bool(row.get("error")),
            success=bool(row.get("success")),
            message=None if message is None else str(message),
            schema=str(schema) if schema else None,
        )

    def descriptors(self) -> list[str]:
        if not self.schema:
            return []
        return [descriptor.strip() for descriptor in self.schema.split(",")]


Handler = Callable[[ProcedureDatabase, RequestFields], Awaitable[InvocationResult]]


def bind_arguments(
    procedure: Procedure, bindings: Mapping[str, ParameterBinding], fields: RequestFields
) -> list[Any]:
    """Resolve one positional argument per declared parameter."""
    args: list[Any] = []
    for parameter in procedure.parameters:
        binding = bindings.get(parameter)
        if binding is None:
            raise BindingError(procedure.name, parameter)
        args.append(encode_argument(_lookup(binding, fields)))
    return args


def encode_argument(value: Any) -> Any:
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return value


def _lookup(binding: ParameterBinding, fields: RequestFields) -> Any:
    source = binding.get_from
    if source == "headers":
        return fields.headers.get(binding.alias.lower())
    if source == "user":
        return (fields.user or {}).get(binding.alias)
    if source in ("querystring", "params", "request"):
        return getattr(fields, source).get(binding.alias)
    if source == "body":
        if isinstance(fields.body, Mapping):
            return fields.body.get(binding.alias)
        return None
    return None


def demultiplex(results: Sequence[Any]) -> InvocationResult:
    sets = list(results)
    if sets and isinstance(sets[-1], CallStatus):
        sets.pop()

    envelope = _take_envelope(sets)
    if envelope is None:
        return InvocationResult(status=200, payload=sets)

    if envelope.status:
        status = envelope.status
    else:
        status = 400 if envelope.error else 200

    descriptors = envelope.descriptors()
    if not descriptors:
        if envelope.error:
            return InvocationResult(
                status=status,
                payload={
                    "error": envelope.error,
                    "success": envelope.success,
                    "message": envelope.message,
                },
            )
        return InvocationResult(status=status, payload=sets)

    shaped = [
        _shape(descriptor, sets[index] if index < len(sets) else None)
        for index, descriptor in enumerate(descriptors)
    ]
    if len(shaped) == 1:
        return InvocationResult(status=status, payload=shaped[0])
    return InvocationResult(status=status, payload=shaped)


def _take_envelope(sets: list[Any]) -> ResultEnvelope | None:
    if not sets:
        return None
    first = sets[0]
    if not isinstance(first, list) or not first:
        return None
    row = first[0]
    if not isinstance(row, Mapping) or not row.get(SENTINEL_COLUMN):
        return None
    sets.pop(0)
    return ResultEnvelope.from_row(row)


def _shape(descriptor: str, result_set: Any) -> Any:
    if descriptor == OBJECT_DESCRIPTOR:
        if not result_set:
            return None
        return result_set[0]
    if result_set is None:
        return []
    return result_set


def make_handler(procedure: Procedure, bindings: Iterable[ParameterBinding]) -> Handler:
    binding_map = {binding.name: binding for binding in bindings}

    async def handler(database: ProcedureDatabase, fields: RequestFields) -> InvocationResult:
        args = bind_arguments(procedure, binding_map, fields)
        logger.info("invoke: procedure=%s args=%s", procedure.name, len(args))
        try:
            results = await database.call(procedure.name, args)
        except Exception as exc:  # noqa: BLE001
            raise ProcedureCallError(procedure.name, exc) from exc
        return demultiplex(results)

    return handler


class ProcedureInvoker:
    def __init__(self, database: ProcedureDatabase, routes: Iterable[RouteSpec] = ()) -> None:
        self.database = database
        self._handlers: dict[str, Handler] = {
            route.procedure.name: route.handler for route in routes
        }

    async def invoke(self, procedure_name: str, fields: RequestFields) -> InvocationResult:
        handler = self._handlers.get(procedure_name)
        if handler is None:
            raise LookupError(f"Unknown procedure '{procedure_name}'")
        return await handler(self.database, fields)
