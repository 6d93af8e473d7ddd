"""Hooks that adjust the reply after the procedure ran."""

from __future__ import annotations

from typing import Any

from fastapi import Request


def wrap_payload(request: Request, reply: Any) -> None:
    reply.payload = {"data": reply.payload}


def tag_response(request: Request, reply: Any) -> None:
    reply.header("X-Procedure", request.scope["route"].name)
