"""
Shared helpers for formatting pointer paths and logging search events.
"""
from __future__ import annotations

import datetime as dt
import os
from dataclasses import dataclass
from typing import Any, Optional, Sequence


@dataclass
class ModuleInfo:
    path: str
    base_address: int
    size: int


def describe_address(address: int, modules: Sequence[ModuleInfo]) -> str:
    """Return module+offset notation if possible."""
    for module in modules:
        if module.base_address <= address <= module.base_address + module.size:
            offset = address - module.base_address
            base_name = os.path.basename(module.path) or module.path
            return f"{base_name}+0x{offset:X}"
    return f"0x{address:X}"


def format_path(path: Sequence[Any]) -> str:
    """Render steps as ``[(0x1008, 0x8), (0x7000, 0x0)]``."""
    return "[" + ", ".join(f"(0x{step.address:x}, 0x{step.offset:x})" for step in path) + "]"


def format_static_path(path: Sequence[Any], modules: Optional[Sequence[ModuleInfo]] = None) -> str:
    """Render the dereference chain starting at the head, e.g. ``[[app+0x8]+0x8]+0x10``.

    The head address is shown relative to its module; every following
    bracket is one dereference followed by the step's offset.
    """
    if not path:
        return ""
    expr = describe_address(path[0].address, modules or [])
    for step in path[:-1]:
        expr = f"[{expr}]+0x{step.offset:X}"
    return expr


def log_search_event(log_path: str, event: str, **fields: Any) -> None:
    """Append one ``<utc time> <event> key=value ...`` line to ``log_path``.

    Values containing spaces are quoted.
    """
    os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
    timestamp = dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    parts = [timestamp, event]
    for key, value in fields.items():
        text = str(value)
        parts.append(f'{key}="{text}"' if " " in text else f"{key}={text}")
    with open(log_path, "a", encoding="utf-8") as fh:
        fh.write(" ".join(parts) + "\n")
