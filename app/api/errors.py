# [파일 설명]
# - 목적: 애플리케이션 전역 예외를 일관된 JSON 응답으로 변환한다.
# - 제공 기능: 검증 오류(400), HTTP 오류, 프로시저 애플리케이션 오류, 내부 오류(500) 핸들러를 제공한다.
# - 입력/출력: 예외 객체를 입력으로 받아 JSONResponse를 반환한다.
# - 주의 사항: 내부 오류 상세와 원문 SQL은 응답에 포함하지 않고 로그로만 남긴다.
# - 연관 모듈: app.main에서 등록되며 app.services.proc_errors 예외를 사용한다.
from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.services.proc_errors import ProcedureCallError

logger = logging.getLogger(__name__)

INTERNAL_ERROR_BODY = {"error": "Internal Server Error"}


# [함수 설명]
# - 목적: 요청 검증 실패를 400 응답으로 변환한다.
# - 입력: Request, RequestValidationError
# - 출력: message/errors 필드를 포함한 JSONResponse
# - 에러 처리: 오류 목록에서 입력 값(input)과 ctx는 제거한다.
# - 결정론: 동일 오류 목록에 대해 동일 응답을 반환한다.
# - 보안: 사용자가 보낸 원문 값(비밀번호 등)을 응답에 되돌려주지 않는다.
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [_public_error(error) for error in exc.errors()]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Validation error", "errors": jsonable_encoder(errors)},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# [함수 설명]
# - 목적: 프로시저 호출 실패를 응답으로 변환한다.
# - 입력: Request, ProcedureCallError
# - 출력: 애플리케이션 오류면 선언된 상태 코드와 payload, 아니면 500 응답
# - 에러 처리: 분류되지 않은 DB 오류는 로그에만 상세를 남긴다.
# - 결정론: 동일 오류 문자열에 대해 동일 응답을 반환한다.
# - 보안: DB 오류 메시지 원문은 애플리케이션 오류가 아닌 경우 노출하지 않는다.
async def procedure_call_exception_handler(request: Request, exc: ProcedureCallError) -> JSONResponse:
    app_error = exc.application_error
    if app_error is not None:
        logger.info(
            "procedure_call_error: procedure=%s status=%s code=%s",
            exc.procedure,
            app_error.status_code,
            app_error.code,
        )
        return JSONResponse(status_code=app_error.status_code, content=app_error.payload())

    logger.error("procedure_call_error: procedure=%s", exc.procedure, exc_info=exc.cause)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=INTERNAL_ERROR_BODY)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception: path=%s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=INTERNAL_ERROR_BODY)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(ProcedureCallError, procedure_call_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


def _public_error(error: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in error.items() if key not in ("input", "ctx", "url")}
