"""Swap / usage recorder hooks. Fire-and-forget: results are never awaited or required."""

from __future__ import annotations

from collections import Counter
from typing import Callable, Optional

from loguru import logger

# (from_name, to_name) -> None
SwapHook = Callable[[str, str], None]
# (exercise_name, template_id) -> None
UsageHook = Callable[[str, Optional[str]], None]

_swap_hooks: list[SwapHook] = []
_usage_hooks: list[UsageHook] = []


def register_swap_hook(fn: SwapHook) -> None:
    _swap_hooks.append(fn)


def register_usage_hook(fn: UsageHook) -> None:
    _usage_hooks.append(fn)


def clear_hooks() -> None:
    """Drop every registered hook (tests, reconfiguration)."""
    _swap_hooks.clear()
    _usage_hooks.clear()


def record_swap(from_name: str, to_name: str) -> None:
    for fn in list(_swap_hooks):
        try:
            fn(from_name, to_name)
        except Exception:
            logger.opt(exception=True).warning("swap hook {} failed", getattr(fn, "__name__", fn))


def record_usage(exercise_name: str, template_id: Optional[str] = None) -> None:
    for fn in list(_usage_hooks):
        try:
            fn(exercise_name, template_id)
        except Exception:
            logger.opt(exception=True).warning("usage hook {} failed", getattr(fn, "__name__", fn))


class UsageRecorder:
    """In-memory recorder; register its bound methods as hooks to collect counts."""

    def __init__(self) -> None:
        self.swaps: Counter[tuple[str, str]] = Counter()
        self.usage: Counter[str] = Counter()
        self.template_usage: Counter[tuple[str, str]] = Counter()

    def on_swap(self, from_name: str, to_name: str) -> None:
        self.swaps[(from_name, to_name)] += 1

    def on_usage(self, exercise_name: str, template_id: Optional[str]) -> None:
        self.usage[exercise_name] += 1
        if template_id:
            self.template_usage[(exercise_name, template_id)] += 1

    def install(self) -> "UsageRecorder":
        register_swap_hook(self.on_swap)
        register_usage_hook(self.on_usage)
        return self
