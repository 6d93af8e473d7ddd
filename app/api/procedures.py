# [파일 설명]
# - 목적: 컴파일된 프로시저 라우트 테이블을 FastAPI 라우터로 등록한다.
# - 제공 기능: 요청 수명주기(훅, 인증 컨텍스트, 가드, 스키마 검증, 호출, 응답)를 실행한다.
# - 입력/출력: HTTP 요청을 RequestFields로 변환하고 프로시저 결과를 JSON 응답으로 반환한다.
# - 주의 사항: 라우트 구성은 기동 시 한 번만 만들어지며 요청 처리 중 변경하지 않는다.
# - 연관 모듈: app.services.route_compiler, app.services.proc_invoker, app.api.errors와 연동된다.
from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.background import BackgroundTask

from app.services.auth_context import get_auth_context
from app.services.proc_invoker import ProcedureInvoker, RequestFields
from app.services.route_compiler import RouteSpec, RouteTable, Step

logger = logging.getLogger(__name__)

OPENAPI_LOCATIONS = {"querystring": "query", "params": "path", "headers": "header"}


# [클래스 설명]
# - 역할: 훅과 가드가 공유하는 응답 상태(상태 코드, payload, 헤더)를 보관한다.
# - 사용 위치: 요청 수명주기 전체에서 (request, reply) 인자로 전달된다.
# - 핵심 동작: pre_serialization 훅은 payload를, on_send 훅은 헤더/상태 코드를 바꿀 수 있다.
# - 제약/주의: 요청마다 새로 생성되며 요청 간에 공유하지 않는다.
@dataclass
class Reply:
    status_code: int = 200
    payload: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    def status(self, code: int) -> Reply:
        self.status_code = code
        return self

    def header(self, name: str, value: str) -> Reply:
        self.headers[name] = value
        return self


def build_router(table: RouteTable, invoker: ProcedureInvoker) -> APIRouter:
    router = APIRouter()
    for route in table:
        router.add_api_route(
            to_route_path(route.path),
            _make_endpoint(route, invoker),
            methods=[route.method],
            name=route.procedure.name,
            openapi_extra=build_openapi_extra(route),
        )
        logger.info(
            "build_router: method=%s path=%s procedure=%s",
            route.method,
            route.path,
            route.procedure.name,
        )
    return router


def to_route_path(path: str) -> str:
    return "/".join(
        f"{{{segment[1:]}}}" if segment.startswith(":") else segment for segment in path.split("/")
    )


# [함수 설명]
# - 목적: 라우트 하나의 요청 처리 엔드포인트를 생성한다.
# - 입력: RouteSpec, ProcedureInvoker
# - 출력: Request를 받아 Response를 반환하는 비동기 함수
# - 에러 처리: 훅/가드의 HTTPException과 검증 오류는 전역 핸들러로 전달된다.
# - 결정론: 단계 순서는 on_request → 인증/가드 → pre_validation → 검증 → pre_handler → 호출
#   → pre_serialization → on_send → 응답 → on_response로 고정된다.
# - 보안: 가드는 스키마 검증보다 먼저 실행되어 익명 요청을 조기에 차단한다.
def _make_endpoint(route: RouteSpec, invoker: ProcedureInvoker):
    async def endpoint(request: Request) -> Response:
        reply = Reply()
        request.state.procedure_data = {}

        await run_steps(route.hooks_for("on_request"), request, reply)
        await run_steps(route.pre_validation, request, reply)
        await run_steps(route.hooks_for("pre_validation"), request, reply)
        sections = await validate_sections(route, request)
        await run_steps(route.hooks_for("pre_handler"), request, reply)

        fields = RequestFields(
            querystring=sections["querystring"],
            params=sections["params"],
            body=sections["body"],
            headers=sections["headers"],
            user=get_auth_context(request).user,
            request=request.state.procedure_data,
        )
        result = await invoker.invoke(route.procedure.name, fields)
        reply.status_code = result.status
        reply.payload = result.payload

        await run_steps(route.hooks_for("pre_serialization"), request, reply)
        await run_steps(route.hooks_for("on_send"), request, reply)

        response = JSONResponse(
            content=jsonable_encoder(reply.payload),
            status_code=reply.status_code,
            headers=reply.headers,
        )
        on_response = route.hooks_for("on_response")
        if on_response:
            response.background = BackgroundTask(run_steps, on_response, request, reply)
        return response

    endpoint.__name__ = route.procedure.name
    return endpoint


async def run_steps(steps: Iterable[Step], request: Request, reply: Reply) -> None:
    for step in steps:
        result = step(request, reply)
        if inspect.isawaitable(result):
            await result


async def validate_sections(route: RouteSpec, request: Request) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "querystring": query_dict(request),
        "params": dict(request.path_params),
        "body": await read_body(request),
        "headers": {key.lower(): value for key, value in request.headers.items()},
    }
    if raw["body"] is None and route.schema.section("body") is not None:
        raw["body"] = {}

    errors: list[dict[str, Any]] = []
    validated = dict(raw)
    for section, _node in route.schema.sections:
        try:
            validated[section] = route.schema.validate(section, raw[section])
        except ValidationError as exc:
            for error in exc.errors(include_url=False):
                errors.append({**error, "loc": (section, *error["loc"])})

    if errors:
        logger.info(
            "validate_sections: procedure=%s errors=%s", route.procedure.name, len(errors)
        )
        raise RequestValidationError(errors)
    return validated


def query_dict(request: Request) -> dict[str, Any]:
    query: dict[str, Any] = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        query[key] = values if len(values) > 1 else values[0]
    return query


async def read_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload"
        ) from exc


def build_openapi_extra(route: RouteSpec) -> dict[str, Any]:
    parameters: list[dict[str, Any]] = []
    documented_path_params: set[str] = set()
    for section, location in OPENAPI_LOCATIONS.items():
        node = route.schema.section(section)
        if node is None:
            continue
        for alias, field_node in node.fields:
            parameters.append(
                {
                    "name": alias,
                    "in": location,
                    "required": location == "path" or field_node.is_required,
                    "schema": field_node.json_schema(),
                }
            )
            if location == "path":
                documented_path_params.add(alias)

    for name in route.path_parameters:
        if name not in documented_path_params:
            parameters.append({"name": name, "in": "path", "required": True, "schema": {"type": "string"}})

    extra: dict[str, Any] = {"summary": route.procedure.name}
    if parameters:
        extra["parameters"] = parameters
    body = route.schema.section("body")
    if body is not None:
        extra["requestBody"] = {
            "required": True,
            "content": {"application/json": {"schema": body.json_schema()}},
        }
    return extra
