# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .env import EnvironmentScope


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------

class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    MANUAL_DISPATCH = "manual_dispatch"

    @classmethod
    def parse(cls, value: str) -> "EventKind":
        # the document spells manual dispatch "workflow_dispatch"
        if value == "workflow_dispatch":
            return cls.MANUAL_DISPATCH
        return cls(value)


@dataclass(frozen=True)
class Event:
    """What triggered a run. Immutable once received."""
    kind: EventKind
    branch: str | None = None
    changed_paths: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Event":
        branch = data.get("branch")
        if branch is not None:
            branch = normalize_branch(str(branch))
        changed = data.get("changed_paths") or ()
        if not isinstance(changed, (list, tuple)):
            raise ValueError(
                f"changed_paths must be a list of paths, got {type(changed).__name__}"
            )
        return cls(
            kind=EventKind.parse(str(data["kind"])),
            branch=branch,
            changed_paths=tuple(str(p) for p in changed),
        )


def normalize_branch(ref: str) -> str:
    prefix = "refs/heads/"
    return ref[len(prefix):] if ref.startswith(prefix) else ref


# ----------------------------------------------------------------------
# Pipeline document
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class PathFilter:
    """Ordered glob patterns. A leading '!' negates; the last matching pattern wins."""
    patterns: Tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.patterns)


@dataclass(frozen=True)
class TriggerRule:
    """Filters for one event kind (push / pull_request / manual_dispatch)."""
    kind: EventKind
    branches: Optional[Tuple[str, ...]] = None
    branches_ignore: Optional[Tuple[str, ...]] = None
    paths: Optional[PathFilter] = None
    paths_ignore: Optional[PathFilter] = None


CHECKOUT_ACTION = "actions/checkout"


@dataclass(frozen=True)
class Step:
    """
    One ordered unit of work inside a job.

    Exactly one of `uses` (reusable action, with `with_` inputs) or `run`
    (inline command block) is set.
    """
    index: int
    id: str | None = None
    name: str | None = None
    uses: str | None = None
    with_: Dict[str, str] = field(default_factory=dict)
    run: str | None = None
    env: Dict[str, str] = field(default_factory=dict)
    working_directory: str | None = None
    shell: str | None = None
    continue_on_error: bool = False

    @property
    def action(self) -> str | None:
        """Action name without its '@ref' suffix."""
        if self.uses is None:
            return None
        return self.uses.split("@", 1)[0]

    @property
    def precondition(self) -> bool:
        # checkout must succeed before anything else can run
        return self.action == CHECKOUT_ACTION

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.uses:
            return f"Run {self.uses}"
        first = (self.run or "").strip().splitlines()
        return f"Run {first[0]}" if first else f"step-{self.index + 1}"

    @property
    def ident(self) -> str:
        """Identifier used in reports: explicit id, else display name."""
        return self.id or self.display_name


@dataclass(frozen=True)
class Strategy:
    """axis name -> ordered values; the Cartesian product is the matrix."""
    axes: Tuple[Tuple[str, Tuple[Any, ...]], ...] = ()
    include: Tuple[Dict[str, Any], ...] = ()
    exclude: Tuple[Dict[str, Any], ...] = ()
    max_parallel: int | None = None
    fail_fast: bool = False


DEFAULT_TIMEOUT_MINUTES = 360


@dataclass(frozen=True)
class Job:
    """A CI job: ordered steps + runner/matrix/timeout metadata. A template when it has a strategy."""
    id: str
    index: int
    steps: Tuple[Step, ...]
    name: str | None = None
    runs_on: Tuple[str, ...] = ()
    timeout: float = DEFAULT_TIMEOUT_MINUTES * 60.0  # seconds
    strategy: Strategy | None = None
    env: Dict[str, str] = field(default_factory=dict)
    needs: Tuple[str, ...] = ()
    continue_on_error: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class Pipeline:
    """Parsed, validated workflow. Read-only after parse; shared by all instances."""
    name: str | None
    triggers: Dict[EventKind, TriggerRule]
    env: Dict[str, str]
    jobs: Tuple[Job, ...]

    def job(self, job_id: str) -> Job:
        for j in self.jobs:
            if j.id == job_id:
                return j
        raise KeyError(job_id)


# ----------------------------------------------------------------------
# Expanded work
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class JobInstance:
    """A Job bound to one matrix combination plus its resolved job-level environment."""
    job: Job
    index: int
    combination: Tuple[Tuple[str, Any], ...]
    label: str
    cache_key: str
    steps: Tuple[Step, ...]
    scope: EnvironmentScope = field(default_factory=EnvironmentScope)

    @property
    def env(self) -> Dict[str, str]:
        return self.scope.resolve()

    @property
    def matrix(self) -> Dict[str, Any]:
        return dict(self.combination)

    @property
    def order(self) -> Tuple[int, int]:
        return (self.job.index, self.index)


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

class Status(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMED_OUT = "timed-out"


@dataclass(frozen=True)
class StepResult:
    step: str
    status: Status
    exit_code: int | None = None
    duration: float = 0.0
    message: str | None = None
    output: str | None = None  # tail, kept for failing steps only


@dataclass(frozen=True)
class JobResult:
    job_id: str
    label: str
    order: Tuple[int, int]
    status: Status
    steps: Tuple[StepResult, ...] = ()
    error_kind: str | None = None
    message: str | None = None
    required: bool = True
    duration: float = 0.0
    failed_step: str | None = None  # the step that stopped the instance

    @property
    def first_failure(self) -> StepResult | None:
        if self.failed_step is not None:
            for s in self.steps:
                if s.step == self.failed_step:
                    return s
        for s in self.steps:
            if s.status in (Status.FAILED, Status.TIMED_OUT):
                return s
        return None

    @property
    def ok(self) -> bool:
        return self.status == Status.SUCCEEDED


@dataclass(frozen=True)
class PipelineResult:
    succeeded: bool
    exit_code: int
    jobs: Tuple[JobResult, ...] = ()
    triggered: bool = True
