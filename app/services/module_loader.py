from __future__ import annotations

import importlib.util
import inspect
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class ModuleLoadError(ImportError):
    pass


def iter_public_functions(
    directory: str | Path, namespace: str
) -> list[tuple[str, Callable[..., Any], Path]]:
    """Import every ``*.py`` file under ``directory`` and list its public functions.

    Files whose name starts with ``_`` are skipped. Only functions defined in
    the file itself are listed, so imported helpers are not picked up twice.
    """
    root = Path(directory)
    if not root.is_dir():
        logger.info("iter_public_functions: missing_dir=%s", root)
        return []

    functions: list[tuple[str, Callable[..., Any], Path]] = []
    for py_file in sorted(root.rglob("*.py")):
        if py_file.name.startswith("_"):
            continue
        module = _load_module(py_file, root, namespace)
        for name, func in inspect.getmembers(module, inspect.isfunction):
            if name.startswith("_") or func.__module__ != module.__name__:
                continue
            functions.append((name, func, py_file))
    return functions


def _load_module(py_file: Path, root: Path, namespace: str) -> Any:
    relative = py_file.relative_to(root).with_suffix("")
    module_name = ".".join([namespace, *relative.parts])
    spec = importlib.util.spec_from_file_location(module_name, py_file)
    if spec is None or spec.loader is None:
        raise ModuleLoadError(f"Cannot load module from {py_file}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        del sys.modules[module_name]
        raise ModuleLoadError(f"Failed to import {py_file}: {exc}") from exc

    logger.info("load_module: module=%s path=%s", module_name, py_file)
    return module
