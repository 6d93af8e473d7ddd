from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Request

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class AuthContext:
    token: str | None = None
    is_authenticated: bool = False
    is_authorised: bool = False
    user: dict[str, Any] | None = None


ANONYMOUS = AuthContext()


class TokenVerifier:
    """Decode bearer tokens, reporting expiry instead of rejecting it."""

    def __init__(self, secret: str | None, algorithms: Sequence[str] = ("HS256",)) -> None:
        self._secret = secret
        self._algorithms = list(algorithms)

    def verify(self, token: str) -> tuple[dict[str, Any], bool] | None:
        if not self._secret or not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=self._algorithms,
                options={"verify_exp": False},
            )
        except jwt.InvalidTokenError as exc:
            logger.info("TokenVerifier.verify: rejected reason=%s", type(exc).__name__)
            return None

        exp = payload.get("exp")
        is_expired = isinstance(exp, (int, float)) and time.time() >= exp
        return payload, is_expired


def bearer_token(request: Request) -> str:
    header = request.headers.get("authorization", "")
    if header.lower().startswith(BEARER_PREFIX):
        return header[len(BEARER_PREFIX) :].strip()
    return ""


def build_auth_context_setter(
    secret: str | None, algorithms: Sequence[str] = ("HS256",)
) -> Callable[[Request, Any], None]:
    if not secret:
        logger.warning("build_auth_context_setter: JWT_SECRET not set, all requests are anonymous")
    verifier = TokenVerifier(secret, algorithms)

    def set_auth_context(request: Request, reply: Any) -> None:
        token = bearer_token(request)
        verified = verifier.verify(token)
        if verified is None:
            request.state.auth = AuthContext(token=token or None)
            return
        payload, is_expired = verified
        request.state.auth = AuthContext(
            token=token,
            is_authenticated=True,
            is_authorised=not is_expired,
            user=payload,
        )

    return set_auth_context


def get_auth_context(request: Request) -> AuthContext:
    return getattr(request.state, "auth", ANONYMOUS)
