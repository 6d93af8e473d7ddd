from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from app.services.module_loader import iter_public_functions

logger = logging.getLogger(__name__)

HOOK_PHASES = (
    "on_request",
    "pre_validation",
    "pre_handler",
    "pre_serialization",
    "on_send",
    "on_response",
)
# lifecycle names as written in camelCase annotations
HOOK_PHASE_ALIASES = {
    "onRequest": "on_request",
    "preValidation": "pre_validation",
    "preHandler": "pre_handler",
    "preSerialization": "pre_serialization",
    "onSend": "on_send",
    "onResponse": "on_response",
}

Hook = Callable[..., Any]


def normalize_phase(phase: str) -> str:
    return HOOK_PHASE_ALIASES.get(phase, phase)


class HookRegistryError(ValueError):
    pass


class HookRegistry:
    """Lifecycle hook functions addressable by name from ``@hooks`` tags."""

    def __init__(self) -> None:
        self._hooks: dict[str, Hook] = {}

    def register(self, name: str, func: Hook) -> None:
        if name in self._hooks:
            raise HookRegistryError(f"Duplicate hook function '{name}'")
        if not callable(func):
            raise HookRegistryError(f"Hook '{name}' is not callable")
        self._hooks[name] = func
        logger.info("HookRegistry.register: name=%s", name)

    def get(self, name: str) -> Hook | None:
        return self._hooks.get(name)

    def names(self) -> list[str]:
        return sorted(self._hooks)

    def __contains__(self, name: object) -> bool:
        return name in self._hooks

    def __len__(self) -> int:
        return len(self._hooks)


def load_hook_functions(directory: str | Path | None) -> HookRegistry:
    registry = HookRegistry()
    if directory is None:
        return registry
    for name, func, _path in iter_public_functions(directory, "procedure_hooks"):
        registry.register(name, func)
    logger.info("load_hook_functions: dir=%s hooks=%s", directory, len(registry))
    return registry
