# runner.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from .dag import upstream_of
from .errors import InvalidStrategy
from .executor import ActionRegistry, ShellStepExecutor, StepExecutor
from .matrix import expand
from .model import Event, Job, JobInstance, JobResult, Pipeline, PipelineResult, Status, StepResult
from .report import summarize
from .scheduler import Scheduler
from .triggers import explain, evaluate
from .ui.console import get_console


@dataclass
class Plan:
    """What a run would do: trigger decision, expanded instances, jobs that failed expansion."""
    event: Event
    triggered: bool
    reason: str
    jobs: List[Job] = field(default_factory=list)
    instances: List[JobInstance] = field(default_factory=list)
    invalid: List[JobResult] = field(default_factory=list)


# ----------------------------------------------------------------------
# Planning
# ----------------------------------------------------------------------

def _invalid_strategy_result(job: Job, err: InvalidStrategy) -> JobResult:
    return JobResult(
        job_id=job.id,
        label=job.display_name,
        order=(job.index, 0),
        status=Status.FAILED,
        steps=tuple(StepResult(step=s.ident, status=Status.SKIPPED) for s in job.steps),
        error_kind=err.kind,
        message=err.message,
        required=not job.continue_on_error,
    )


def select_jobs(pipeline: Pipeline, jobs: List[Job], only: Optional[Iterable[str]]) -> List[Job]:
    """Restrict `jobs` to `only` plus everything they transitively need."""
    if not only:
        return jobs
    wanted = set()
    for job_id in only:
        try:
            pipeline.job(job_id)
        except KeyError:
            raise ValueError(
                f"Unknown job '{job_id}'. Known jobs: {[j.id for j in pipeline.jobs]}"
            ) from None
        wanted.add(job_id)
        wanted |= upstream_of(job_id, pipeline.jobs)
    return [j for j in jobs if j.id in wanted]


def plan(pipeline: Pipeline, event: Event, *, only: Optional[Iterable[str]] = None) -> Plan:
    """
    Trigger evaluation + matrix expansion, no execution.

    InvalidStrategy is scoped to its job: it is recorded in `invalid` and
    every other job is still expanded.
    """
    triggered, reason = explain(event, pipeline)
    jobs = select_jobs(pipeline, evaluate(event, pipeline), only)
    p = Plan(event=event, triggered=triggered, reason=reason, jobs=jobs)

    for job in jobs:
        try:
            p.instances.extend(expand(job, pipeline.env))
        except InvalidStrategy as e:
            get_console().print_debug(f"{job.id}: {e.message}")
            p.invalid.append(_invalid_strategy_result(job, e))
    return p


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_pipeline(
    pipeline: Pipeline,
    event: Event,
    *,
    executor: StepExecutor | None = None,
    workspace: str | Path = ".",
    max_workers: int | None = None,
    infra_retries: int = 0,
    retry_delay: float = 0.0,
    runner_labels: Optional[Iterable[str]] = None,
    actions: ActionRegistry | None = None,
    only: Optional[Iterable[str]] = None,
) -> PipelineResult:
    """
    Event -> triggers -> matrix -> scheduler -> verdict.

    A non-triggering event yields a successful, empty result.
    """
    console = get_console()
    p = plan(pipeline, event, only=only)
    console.print_trigger(p.triggered, p.reason)
    if not p.triggered:
        return summarize([], triggered=False)

    console.print_run_started(
        pipeline=pipeline.name or "(unnamed)",
        event=f"{event.kind.value} {event.branch or ''}".strip(),
        instance_count=len(p.instances),
    )

    scheduler = Scheduler(
        executor or ShellStepExecutor(),
        workspace=workspace,
        max_workers=max_workers,
        infra_retries=infra_retries,
        retry_delay=retry_delay,
        runner_labels=runner_labels,
        actions=actions,
        console=console,
    )
    results = scheduler.run(p.instances, settled=p.invalid)
    return summarize([*p.invalid, *results])
