"""Hooks that feed the ``request`` parameter source."""

from __future__ import annotations

from typing import Any

from fastapi import Request


async def set_greeting_target(request: Request, reply: Any) -> None:
    request.state.procedure_data["testdata"] = "world"
