# report.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable

from .errors import InfrastructureError, InvalidStrategy
from .model import JobResult, PipelineResult, Status

EXIT_OK = 0
EXIT_FAILURE = 1          # a step failed, timed out, or was skipped because of one
EXIT_INFRASTRUCTURE = 2   # runner/executor/configuration problem

INFRASTRUCTURE_KINDS = (InfrastructureError.kind, InvalidStrategy.kind)


def exit_code_for(results: Iterable[JobResult]) -> int:
    code = EXIT_OK
    for r in results:
        if not r.required or r.ok:
            continue
        if r.error_kind in INFRASTRUCTURE_KINDS:
            return EXIT_INFRASTRUCTURE
        code = EXIT_FAILURE
    return code


def summarize(results: Iterable[JobResult], *, triggered: bool = True) -> PipelineResult:
    """
    Aggregate instance results into the pipeline verdict.

    The pipeline succeeds iff every required instance succeeded. Results are
    ordered by job declaration order, then matrix combination order, whatever
    order they completed in.
    """
    ordered = tuple(sorted(results, key=lambda r: r.order))
    code = exit_code_for(ordered)
    return PipelineResult(
        succeeded=code == EXIT_OK,
        exit_code=code,
        jobs=ordered,
        triggered=triggered,
    )


def to_dict(result: PipelineResult) -> Dict[str, Any]:
    jobs = []
    for j in result.jobs:
        failure = j.first_failure if not j.ok else None
        jobs.append({
            "job": j.job_id,
            "label": j.label,
            "status": j.status.value,
            "required": j.required,
            "error_kind": j.error_kind,
            "message": j.message,
            "duration": round(j.duration, 3),
            "first_failure": (
                {"step": failure.step, "exit_code": failure.exit_code} if failure is not None else None
            ),
            "steps": [
                {
                    "step": s.step,
                    "status": s.status.value,
                    "exit_code": s.exit_code,
                    "duration": round(s.duration, 3),
                }
                for s in j.steps
            ],
        })
    return {
        "verdict": "success" if result.succeeded else "failure",
        "exit_code": result.exit_code,
        "triggered": result.triggered,
        "jobs": jobs,
        "counts": {
            s.value: sum(1 for j in result.jobs if j.status == s) for s in Status
        },
    }


def write_json(result: PipelineResult, path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(to_dict(result), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return p
