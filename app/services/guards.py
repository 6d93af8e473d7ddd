# [파일 설명]
# - 목적: @guard 태그로 선언되는 인증/권한 가드 팩토리를 제공한다.
# - 제공 기능: auth, role, permission 가드와 기본 가드 맵(DEFAULT_GUARDS)을 제공한다.
# - 입력/출력: (request, reply)를 받아 통과 시 None, 차단 시 HTTPException을 발생시킨다.
# - 상태 코드: 토큰 없음/무효/만료는 401, 역할 또는 권한 부족은 403을 반환한다.
#   미인증 403 또는 역할/권한 부족 401을 기대하는 클라이언트는 호환성을 확인한다.
# - 연관 모듈: app.services.auth_context, app.services.route_compiler와 연동된다.
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from fastapi import HTTPException, Request, status

from app.services.auth_context import AuthContext, get_auth_context

logger = logging.getLogger(__name__)

Guard = Callable[[Request, Any], Any]
GuardFactory = Callable[[Sequence[str]], Guard]


def require_auth(args: Sequence[str] = ()) -> Guard:
    def guard(request: Request, reply: Any) -> None:
        _authenticated(get_auth_context(request))

    return guard


def require_role(args: Sequence[str]) -> Guard:
    roles = _required(args, "role")

    def guard(request: Request, reply: Any) -> None:
        context = _authenticated(get_auth_context(request))
        _require_any(roles, _claim_list(context, "roles"), "role")

    return guard


def require_permission(args: Sequence[str]) -> Guard:
    permissions = _required(args, "permission")

    def guard(request: Request, reply: Any) -> None:
        context = _authenticated(get_auth_context(request))
        _require_any(permissions, _claim_list(context, "permissions"), "permission")

    return guard


DEFAULT_GUARDS: dict[str, GuardFactory] = {
    "auth": require_auth,
    "role": require_role,
    "permission": require_permission,
}


def _required(args: Sequence[str], what: str) -> tuple[str, ...]:
    values = tuple(arg for arg in args if arg)
    if not values:
        raise ValueError(f"at least one {what} is required")
    return values


def _authenticated(context: AuthContext) -> AuthContext:
    if not context.is_authenticated or not context.is_authorised:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return context


def _claim_list(context: AuthContext, claim: str) -> list[str]:
    value = (context.user or {}).get(claim) or []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def _require_any(required: tuple[str, ...], granted: list[str], what: str) -> None:
    if not any(item in granted for item in required):
        logger.info("guard: missing_%s required=%s", what, ",".join(required))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
