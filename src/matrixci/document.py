# document.py
"""
Pipeline document loading.

Two passes:
  1. structural: PyYAML -> pydantic models (unknown keys rejected)
  2. semantic:   filter conflicts, `needs` graph, then conversion to the
                 frozen dataclasses in `model.py`

Every failure surfaces as InvalidDocument; nothing downstream ever sees
raw YAML.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .dag import run_order
from .errors import InvalidDocument
from .model import (
    DEFAULT_TIMEOUT_MINUTES,
    EventKind,
    Job,
    PathFilter,
    Pipeline,
    Step,
    Strategy,
    TriggerRule,
)

Scalar = Union[bool, int, float, str]
StrList = Union[str, List[str]]

JOB_ID_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")
MATRIX_RESERVED = ("include", "exclude")


class _Loader(yaml.SafeLoader):
    """SafeLoader with YAML 1.2 booleans: only true/false, so `on:` and `OFF:` stay strings."""


_BOOL_TAG = "tag:yaml.org,2002:bool"
_Loader.yaml_implicit_resolvers = {
    first: [(tag, rx) for tag, rx in resolvers if tag != _BOOL_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
_Loader.add_implicit_resolver(
    _BOOL_TAG,
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)


# ----------------------------------------------------------------------
# Structural schema
# ----------------------------------------------------------------------

class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class _BranchPathFilters(_Model):
    branches: Optional[StrList] = None
    branches_ignore: Optional[StrList] = Field(default=None, alias="branches-ignore")
    paths: Optional[StrList] = None
    paths_ignore: Optional[StrList] = Field(default=None, alias="paths-ignore")

    @model_validator(mode="after")
    def _no_conflicts(self):
        if self.branches is not None and self.branches_ignore is not None:
            raise ValueError("'branches' and 'branches-ignore' cannot be used together")
        if self.paths is not None and self.paths_ignore is not None:
            raise ValueError("'paths' and 'paths-ignore' cannot be used together")
        return self


class _DispatchSpec(_Model):
    # inputs are accepted so real workflows parse; they are not interpreted
    inputs: Optional[Dict[str, Any]] = None


class _TriggersSpec(_Model):
    push: Optional[_BranchPathFilters] = None
    pull_request: Optional[_BranchPathFilters] = None
    workflow_dispatch: Optional[_DispatchSpec] = None


class _StrategySpec(_Model):
    matrix: Dict[str, Any]
    fail_fast: bool = Field(default=False, alias="fail-fast")
    max_parallel: Optional[int] = Field(default=None, alias="max-parallel", ge=1)


class _StepSpec(_Model):
    id: Optional[str] = None
    name: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Scalar] = Field(default_factory=dict, alias="with")
    run: Optional[str] = None
    env: Dict[str, Scalar] = Field(default_factory=dict)
    working_directory: Optional[str] = Field(default=None, alias="working-directory")
    shell: Optional[str] = None
    continue_on_error: bool = Field(default=False, alias="continue-on-error")

    @model_validator(mode="after")
    def _exactly_one_kind(self):
        if (self.uses is None) == (self.run is None):
            raise ValueError("a step needs exactly one of 'uses' or 'run'")
        if self.uses is not None and (self.shell is not None or self.working_directory is not None):
            raise ValueError("'shell' and 'working-directory' only apply to 'run' steps")
        return self


class _JobSpec(_Model):
    name: Optional[str] = None
    runs_on: StrList = Field(alias="runs-on")
    timeout_minutes: float = Field(default=DEFAULT_TIMEOUT_MINUTES, alias="timeout-minutes", gt=0)
    strategy: Optional[_StrategySpec] = None
    env: Dict[str, Scalar] = Field(default_factory=dict)
    needs: StrList = Field(default_factory=list)
    continue_on_error: bool = Field(default=False, alias="continue-on-error")
    steps: List[_StepSpec] = Field(min_length=1)


class _PipelineSpec(_Model):
    name: Optional[str] = None
    on: _TriggersSpec
    env: Dict[str, Scalar] = Field(default_factory=dict)
    jobs: Dict[str, _JobSpec] = Field(min_length=1)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def _as_list(value: Optional[StrList]) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def _env_str(value: Scalar) -> str:
    # values are opaque strings; YAML booleans come back as true/false
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _env(mapping: Dict[str, Scalar]) -> Dict[str, str]:
    return {str(k): _env_str(v) for k, v in mapping.items()}


def _normalize_triggers(raw: Any) -> Dict[str, Any]:
    """`on:` may be a string, a list of strings, or a mapping."""
    if isinstance(raw, str):
        raw = [raw]
    if isinstance(raw, list):
        if not all(isinstance(k, str) for k in raw):
            raise InvalidDocument("trigger list must contain event names", location="on")
        return {k: None for k in raw}
    if isinstance(raw, dict):
        return dict(raw)
    raise InvalidDocument("'on' must be an event name, a list or a mapping", location="on")


def _loc(err: dict) -> str:
    return ".".join(str(p) for p in err.get("loc", ()))


def _from_validation_error(e: ValidationError) -> InvalidDocument:
    errors = e.errors()
    first = errors[0]
    return InvalidDocument(
        first.get("msg", "invalid document"),
        location=_loc(first) or None,
        details={"errors": [f"{_loc(x)}: {x.get('msg')}" for x in errors]},
    )


# ----------------------------------------------------------------------
# Conversion
# ----------------------------------------------------------------------

def _build_triggers(spec: _TriggersSpec) -> Dict[EventKind, TriggerRule]:
    rules: Dict[EventKind, TriggerRule] = {}
    fields_set = spec.model_fields_set
    for key in ("push", "pull_request"):
        if key not in fields_set:
            continue
        f: Optional[_BranchPathFilters] = getattr(spec, key)
        kind = EventKind.parse(key)
        if f is None:
            rules[kind] = TriggerRule(kind=kind)
            continue
        paths = _as_list(f.paths)
        paths_ignore = _as_list(f.paths_ignore)
        rules[kind] = TriggerRule(
            kind=kind,
            branches=_as_list(f.branches),
            branches_ignore=_as_list(f.branches_ignore),
            paths=PathFilter(paths) if paths is not None else None,
            paths_ignore=PathFilter(paths_ignore) if paths_ignore is not None else None,
        )
    if "workflow_dispatch" in fields_set:
        rules[EventKind.MANUAL_DISPATCH] = TriggerRule(kind=EventKind.MANUAL_DISPATCH)
    return rules


def _build_strategy(job_id: str, spec: _StrategySpec) -> Strategy:
    axes: List[Tuple[str, Tuple[Any, ...]]] = []
    for axis, values in spec.matrix.items():
        if axis in MATRIX_RESERVED:
            continue
        if not isinstance(values, list):
            raise InvalidDocument(
                f"matrix axis '{axis}' must be a list of values",
                location=f"jobs.{job_id}.strategy.matrix.{axis}",
            )
        axes.append((str(axis), tuple(values)))

    extra: Dict[str, Tuple[Dict[str, Any], ...]] = {}
    for key in MATRIX_RESERVED:
        entries = spec.matrix.get(key) or []
        if not isinstance(entries, list) or not all(isinstance(x, dict) for x in entries):
            raise InvalidDocument(
                f"matrix '{key}' must be a list of mappings",
                location=f"jobs.{job_id}.strategy.matrix.{key}",
            )
        extra[key] = tuple(dict(x) for x in entries)

    return Strategy(
        axes=tuple(axes),
        include=extra["include"],
        exclude=extra["exclude"],
        max_parallel=spec.max_parallel,
        fail_fast=spec.fail_fast,
    )


def _build_step(index: int, spec: _StepSpec) -> Step:
    return Step(
        index=index,
        id=spec.id,
        name=spec.name,
        uses=spec.uses,
        with_=_env(spec.with_),
        run=spec.run,
        env=_env(spec.env),
        working_directory=spec.working_directory,
        shell=spec.shell,
        continue_on_error=spec.continue_on_error,
    )


def _build_job(index: int, job_id: str, spec: _JobSpec) -> Job:
    if not JOB_ID_RE.match(job_id):
        raise InvalidDocument(
            f"job id '{job_id}' must start with a letter or '_' and contain only alphanumerics, '-' or '_'",
            location=f"jobs.{job_id}",
        )
    step_ids = [s.id for s in spec.steps if s.id is not None]
    if len(set(step_ids)) != len(step_ids):
        raise InvalidDocument("step ids must be unique within a job", location=f"jobs.{job_id}.steps")

    return Job(
        id=job_id,
        index=index,
        name=spec.name,
        runs_on=_as_list(spec.runs_on) or (),
        timeout=float(spec.timeout_minutes) * 60.0,
        strategy=_build_strategy(job_id, spec.strategy) if spec.strategy else None,
        env=_env(spec.env),
        needs=_as_list(spec.needs) or (),
        continue_on_error=spec.continue_on_error,
        steps=tuple(_build_step(i, s) for i, s in enumerate(spec.steps)),
    )


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def build_pipeline(data: Any) -> Pipeline:
    """Validate an already-loaded document (nested dicts/lists) and build a Pipeline."""
    if not isinstance(data, dict):
        raise InvalidDocument("pipeline document must be a mapping")

    data = dict(data)
    if "on" not in data:
        raise InvalidDocument("missing trigger section 'on'", location="on")
    data["on"] = _normalize_triggers(data["on"])

    try:
        spec = _PipelineSpec.model_validate(data)
    except ValidationError as e:
        raise _from_validation_error(e) from e

    jobs = tuple(_build_job(i, job_id, js) for i, (job_id, js) in enumerate(spec.jobs.items()))

    try:
        run_order(jobs)
    except ValueError as e:
        raise InvalidDocument(str(e), location="jobs") from e

    return Pipeline(
        name=spec.name,
        triggers=_build_triggers(spec.on),
        env=_env(spec.env),
        jobs=jobs,
    )


def parse_pipeline(text: str) -> Pipeline:
    """Parse pipeline YAML text."""
    try:
        data = yaml.load(text, Loader=_Loader)
    except yaml.YAMLError as e:
        raise InvalidDocument(f"invalid YAML: {e}") from e
    return build_pipeline(data)


def load_pipeline(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a YAML file path.

    Raises:
      FileNotFoundError if the file does not exist
      InvalidDocument for anything unparseable or invalid
    """
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"Pipeline file not found: {p}")
    if p.suffix not in (".yml", ".yaml"):
        raise InvalidDocument(f"pipeline must be a .yml/.yaml file, got: {p.name}")
    try:
        text = p.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise InvalidDocument(f"pipeline is not valid UTF-8: {e}") from e
    return parse_pipeline(text)
