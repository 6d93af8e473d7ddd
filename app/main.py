# [파일 설명]
# - 목적: FastAPI 애플리케이션을 생성하고 프로시저 라우터를 조립한다.
# - 제공 기능: /health 엔드포인트, 전역 예외 핸들러, 기동 시 라우트 컴파일(lifespan)을 제공한다.
# - 입력/출력: 환경 설정과 DB 카탈로그를 입력으로 받아 HTTP 라우트를 노출한다.
# - 주의 사항: 라우트 컴파일 오류는 기동을 중단시키며 일부 라우트만 등록하지 않는다.
# - 연관 모듈: app.api.procedures, app.api.errors, app.services.route_compiler와 연동된다.
from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.errors import register_exception_handlers
from app.api.procedures import build_router
from app.config import Settings
from app.services.auth_context import build_auth_context_setter
from app.services.guards import DEFAULT_GUARDS, GuardFactory
from app.services.hook_registry import load_hook_functions
from app.services.mysql_database import MySQLProcedureDatabase
from app.services.proc_database import ProcedureDatabase
from app.services.proc_invoker import ProcedureInvoker
from app.services.route_compiler import CompileContext, RouteTable, compile_routes
from app.services.schema_compiler import load_validators

logger = logging.getLogger(__name__)


# [함수 설명]
# - 목적: 훅/검증기 레지스트리를 읽고 DB 카탈로그를 라우트 테이블로 컴파일한다.
# - 입력: ProcedureDatabase, Settings, 가드 팩토리 맵
# - 출력: 불변 RouteTable
# - 에러 처리: 레지스트리/컴파일 오류는 그대로 전파되어 기동을 중단한다.
# - 결정론: 동일 카탈로그와 설정에 대해 동일한 라우트 테이블을 만든다.
# - 보안: 프로시저 정의 원문은 로그에 남기지 않는다.
async def build_route_table(
    database: ProcedureDatabase,
    settings: Settings,
    guards: Mapping[str, GuardFactory] | None = None,
) -> RouteTable:
    context = CompileContext(
        prefix=settings.procedure_prefix,
        guards=dict(guards if guards is not None else DEFAULT_GUARDS),
        hooks=load_hook_functions(settings.hooks_dir),
        validators=load_validators(settings.validators_dir),
        auth_context=build_auth_context_setter(settings.jwt_secret, settings.jwt_algorithms),
        strict_metadata=settings.strict_metadata,
    )
    catalog = await database.fetch_catalog()
    procedures = [proc for proc in catalog if proc.name.startswith(settings.procedure_prefix)]
    if len(procedures) != len(catalog):
        logger.info("build_route_table: skipped=%s", len(catalog) - len(procedures))
    return compile_routes(procedures, context)


def create_app(
    settings: Settings | None = None,
    database: ProcedureDatabase | None = None,
    guards: Mapping[str, GuardFactory] | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        db = database if database is not None else await MySQLProcedureDatabase.connect(settings)
        try:
            table = await build_route_table(db, settings, guards)
            app.state.route_table = table
            app.include_router(build_router(table, ProcedureInvoker(db, table)))
            logger.info("lifespan: routes=%s", len(table))
            yield
        finally:
            if database is None:
                await db.close()

    app = FastAPI(lifespan=lifespan)
    register_exception_handlers(app)

    # [함수 설명]
    # - 목적: 서비스 상태 확인을 위한 헬스 체크 응답을 제공한다.
    # - 입력: 요청 바디 없이 호출된다.
    # - 출력: status 필드를 포함한 간단한 상태 응답을 반환한다.
    # - 에러 처리: 내부 예외 없이 즉시 성공 응답을 반환한다.
    # - 결정론: 항상 동일한 상태 값을 반환하도록 유지한다.
    # - 보안: 민감 정보는 응답에 포함하지 않는다.
    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
