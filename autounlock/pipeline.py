"""Ordered stage driver.

Stages run one after another. The first error stops the run, and whatever
is raised leaves with the names of the stages that finished before it in a
``completed`` attribute.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .errors import AutoUnlockError
from .executil import trace
from .model import Config, TargetVolume


@dataclass
class RunContext:
    config: Config
    tpm: Any
    luks: Any
    device_arg: Optional[str] = None
    argv: List[str] = field(default_factory=list)
    target: Optional[TargetVolume] = None
    secret_path: Optional[str] = None
    kernel: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    guidance: Optional[str] = None


@dataclass
class Stage:
    name: str
    func: Callable[[RunContext], Optional[Dict[str, Any]]]


@dataclass
class StageResult:
    name: str
    ok: bool
    detail: Dict[str, Any] = field(default_factory=dict)
    error: Optional[BaseException] = None
    duration: float = 0.0


def run_pipeline(ctx: RunContext, stages: List[Stage]) -> List[StageResult]:
    results: List[StageResult] = []
    for stage in stages:
        trace("pipeline.stage.start", stage=stage.name)
        started = time.time()
        try:
            detail = stage.func(ctx) or {}
        except Exception as exc:
            dur = time.time() - started
            completed = [r.name for r in results]
            # Unexpected errors carry the same record so the caller can report it.
            exc.completed = completed
            kind = exc.kind if isinstance(exc, AutoUnlockError) else type(exc).__name__
            results.append(StageResult(stage.name, False, {}, exc, dur))
            trace(
                "pipeline.stage.failed",
                stage=stage.name,
                kind=kind,
                error=str(exc),
                completed=completed,
                dur=dur,
            )
            raise
        dur = time.time() - started
        results.append(StageResult(stage.name, True, detail, None, dur))
        trace("pipeline.stage.done", stage=stage.name, dur=dur)
    return results
