# scheduler.py
from __future__ import annotations

import time
from collections import Counter
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FuturesTimeout
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from .errors import CIError, InfrastructureError, StepFailure, StepTimeout
from .executor import DEFAULT_SHELL, ActionRegistry, StepExecutor, StepOutcome, StepRequest, step_commands
from .model import JobInstance, JobResult, Status, Step, StepResult
from .ui.console import Console, get_console


def _skipped(steps: Iterable[Step]) -> List[StepResult]:
    return [StepResult(step=s.ident, status=Status.SKIPPED) for s in steps]


class Scheduler:
    """
    Runs job instances on a worker pool.

    - instances with no pending `needs` run concurrently (bounded by max_workers)
    - steps inside an instance run strictly in order, fail-fast
    - each instance has a wall-clock deadline; exceeding it cancels the running step
    - infrastructure faults are retried `infra_retries` times, then fail the instance
    """

    def __init__(
        self,
        executor: StepExecutor,
        *,
        workspace: str | Path = ".",
        max_workers: int | None = None,
        infra_retries: int = 0,
        retry_delay: float = 0.0,
        runner_labels: Optional[Iterable[str]] = None,
        actions: ActionRegistry | None = None,
        console: Console | None = None,
    ):
        if max_workers is not None and max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if infra_retries < 0:
            raise ValueError("infra_retries must be >= 0")
        self.executor = executor
        self.workspace = Path(workspace).resolve()
        self.max_workers = max_workers
        self.infra_retries = infra_retries
        self.retry_delay = retry_delay
        self.runner_labels: Optional[Set[str]] = set(runner_labels) if runner_labels is not None else None
        self.actions = actions or ActionRegistry.default()
        self.console = console or get_console()

    # ------------------------------------------------------------------
    # Whole run
    # ------------------------------------------------------------------

    def run(self, instances: Iterable[JobInstance], *, settled: Iterable[JobResult] = ()) -> List[JobResult]:
        """
        Execute every instance and return their results (completion order).

        `settled` are results already known before scheduling (e.g. jobs whose
        matrix could not be expanded); they count as finished for `needs`.
        """
        pending: List[JobInstance] = sorted(instances, key=lambda i: i.order)
        if not pending:
            return []

        remaining = Counter(i.job.id for i in pending)        # unfinished instances per job
        job_ok: Dict[str, bool] = {i.job.id: True for i in pending}
        job_failed: Dict[str, bool] = {i.job.id: False for i in pending}
        for r in settled:
            job_ok[r.job_id] = job_ok.get(r.job_id, True) and (r.ok or not r.required)
            job_failed[r.job_id] = job_failed.get(r.job_id, False) or not r.ok

        running = Counter()
        results: List[JobResult] = []
        in_flight: Dict[Future, JobInstance] = {}

        def finish(inst: JobInstance, result: JobResult) -> None:
            results.append(result)
            self.console.print_job_result(result)
            remaining[inst.job.id] -= 1
            if not result.ok:
                job_failed[inst.job.id] = True
                if result.required:
                    job_ok[inst.job.id] = False

        workers = self.max_workers or len(pending)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="matrixci") as pool:
            while pending or in_flight:
                progressed = False
                # schedule everything currently ready, in declaration order
                for inst in list(pending):
                    job = inst.job
                    # needs outside this run (not triggered / filtered out) are ignored
                    needs = [n for n in job.needs if n in job_ok]
                    if any(remaining[n] > 0 for n in needs):
                        continue

                    reason = None
                    blocked = [n for n in needs if not job_ok[n]]
                    if blocked:
                        reason = f"needed job(s) did not succeed: {', '.join(blocked)}"
                    elif job.strategy and job.strategy.fail_fast and job_failed[job.id]:
                        reason = "a sibling matrix instance failed (fail-fast)"

                    limit = job.strategy.max_parallel if job.strategy else None
                    if reason is None and limit is not None and running[job.id] >= limit:
                        continue

                    pending.remove(inst)
                    progressed = True
                    if reason is not None:
                        finish(inst, self._skip(inst, reason))
                        continue
                    running[job.id] += 1
                    in_flight[pool.submit(self._run_instance, inst)] = inst

                if not in_flight:
                    if not progressed:
                        raise RuntimeError(f"scheduler stalled with pending instances: {[i.label for i in pending]}")
                    continue

                # wait for one completion, then loop to schedule newly-ready instances
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    inst = in_flight.pop(fut)
                    running[inst.job.id] -= 1
                    try:
                        result = fut.result()
                    except Exception as e:
                        # a bug below _run_instance must not take siblings down
                        result = self._crashed(inst, e)
                    finish(inst, result)

        return results

    def _skip(self, inst: JobInstance, reason: str) -> JobResult:
        self.console.print_debug(f"{inst.label}: skipped ({reason})")
        return JobResult(
            job_id=inst.job.id,
            label=inst.label,
            order=inst.order,
            status=Status.SKIPPED,
            steps=tuple(_skipped(inst.steps)),
            message=reason,
            required=not inst.job.continue_on_error,
        )

    def _crashed(self, inst: JobInstance, exc: Exception) -> JobResult:
        return JobResult(
            job_id=inst.job.id,
            label=inst.label,
            order=inst.order,
            status=Status.FAILED,
            steps=tuple(_skipped(inst.steps)),
            error_kind=InfrastructureError.kind,
            message=f"{type(exc).__name__}: {exc}",
            required=not inst.job.continue_on_error,
        )

    # ------------------------------------------------------------------
    # One instance
    # ------------------------------------------------------------------

    def _run_instance(self, inst: JobInstance) -> JobResult:
        started = time.monotonic()
        deadline = started + inst.job.timeout
        self.console.print_job_start(inst.label)

        status = Status.SUCCEEDED
        error_kind: str | None = None
        message: str | None = None
        failed_step: str | None = None
        steps: List[StepResult] = []

        try:
            self._with_retries(lambda: self._acquire_runner(inst), inst.label, deadline)
        except InfrastructureError as e:
            status, error_kind, message = Status.FAILED, e.kind, e.message
            steps = _skipped(inst.steps)

        abort = status != Status.SUCCEEDED
        for step in inst.steps[len(steps):]:
            if abort:
                steps.append(StepResult(step=step.ident, status=Status.SKIPPED))
                continue

            self.console.print_step(inst.label, step.display_name)
            step_started = time.monotonic()
            result: StepResult
            try:
                outcome = self._run_step(inst, step, deadline)
                result = StepResult(
                    step=step.ident,
                    status=Status.SUCCEEDED,
                    exit_code=outcome.exit_code,
                    duration=time.monotonic() - step_started,
                )
            except StepTimeout as e:
                result = StepResult(
                    step=step.ident,
                    status=Status.TIMED_OUT,
                    duration=time.monotonic() - step_started,
                    message=e.message,
                )
                status, error_kind, message = Status.TIMED_OUT, e.kind, f"instance exceeded {inst.job.timeout:.0f}s"
                failed_step = step.ident
                abort = True
            except InfrastructureError as e:
                result = StepResult(
                    step=step.ident,
                    status=Status.FAILED,
                    duration=time.monotonic() - step_started,
                    message=e.message,
                )
                status, error_kind, message = Status.FAILED, e.kind, e.message
                failed_step = step.ident
                abort = True
            except StepFailure as e:
                result = StepResult(
                    step=step.ident,
                    status=Status.FAILED,
                    exit_code=e.exit_code,
                    duration=time.monotonic() - step_started,
                    message=e.message,
                    output=e.output,
                )
                # a failed checkout always stops the instance
                if step.precondition or not step.continue_on_error:
                    status, error_kind, message = Status.FAILED, e.kind, e.message
                    failed_step = step.ident
                    abort = True

            steps.append(result)
            self.console.print_step_result(inst.label, result)

        return JobResult(
            job_id=inst.job.id,
            label=inst.label,
            order=inst.order,
            status=status,
            steps=tuple(steps),
            error_kind=error_kind,
            message=message,
            required=not inst.job.continue_on_error,
            duration=time.monotonic() - started,
            failed_step=failed_step,
        )

    def _acquire_runner(self, inst: JobInstance) -> None:
        if self.runner_labels is None:
            return
        missing = [label for label in inst.job.runs_on if label not in self.runner_labels]
        if missing:
            raise InfrastructureError(
                f"no runner available for label(s): {', '.join(missing)}",
                job=inst.label,
            )

    def _with_retries(self, fn, label: str, deadline: float):
        attempt = 0
        while True:
            try:
                return fn()
            except InfrastructureError as e:
                if attempt >= self.infra_retries or time.monotonic() + self.retry_delay >= deadline:
                    raise
                attempt += 1
                self.console.print_debug(
                    f"{label}: infrastructure error ({e.message}); retry {attempt}/{self.infra_retries}"
                )
                time.sleep(self.retry_delay)

    # ------------------------------------------------------------------
    # One step
    # ------------------------------------------------------------------

    def _run_step(self, inst: JobInstance, step: Step, deadline: float) -> StepOutcome:
        commands = step_commands(step, self.actions)
        env = inst.scope.with_step(step.env).resolve()
        cwd = (self.workspace / (step.working_directory or ".")).resolve()

        def attempt() -> StepOutcome:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise StepTimeout("no time left in the instance budget", job=inst.label, step=step.ident)
            request = StepRequest(
                job=inst.label,
                step=step.ident,
                commands=list(commands),
                env=dict(env),
                working_directory=cwd,
                timeout=remaining,
                shell=step.shell or DEFAULT_SHELL,
            )
            return self._call_executor(request)

        outcome = self._with_retries(attempt, inst.label, deadline)
        if not outcome.ok:
            raise StepFailure(job=inst.label, step=step.ident, exit_code=outcome.exit_code, output=outcome.output)
        return outcome

    def _call_executor(self, request: StepRequest) -> StepOutcome:
        """Blocking wait on the executor, bounded by the request timeout."""
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="matrixci-step")
        try:
            fut = pool.submit(self.executor.execute, request)
            try:
                return fut.result(timeout=request.timeout)
            except FuturesTimeout:
                request.cancelled.set()
                raise StepTimeout(
                    f"exceeded {request.timeout:.1f}s budget", job=request.job, step=request.step
                )
            except CIError:
                raise
            except Exception as e:
                raise InfrastructureError(
                    f"executor crashed: {type(e).__name__}: {e}", job=request.job, step=request.step
                ) from e
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
