# matrix.py
from __future__ import annotations

import hashlib
import itertools
import json
import re
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .env import EnvironmentScope
from .errors import InvalidStrategy
from .model import Job, JobInstance, Step, Strategy

Combination = Tuple[Tuple[str, Any], ...]

EXPR_RE = re.compile(r"\$\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\.([A-Za-z0-9_.-]+)\s*\}\}")


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def _fmt(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return _json_dumps_stable(value)
    return str(value)


# ----------------------------------------------------------------------
# Expressions
# ----------------------------------------------------------------------

def interpolate(text: Optional[str], contexts: Mapping[str, Mapping[str, Any]]) -> Optional[str]:
    """
    Replace ${{ <context>.<key> }} references.

    Supported contexts are whatever the caller passes (matrix, env).
    Unknown references become the empty string.
    """
    if text is None or "${{" not in text:
        return text

    def sub(m: re.Match) -> str:
        ctx = contexts.get(m.group(1))
        if ctx is None or m.group(2) not in ctx:
            return ""
        return _fmt(ctx[m.group(2)])

    return EXPR_RE.sub(sub, text)


def _interpolate_map(mapping: Mapping[str, str], contexts) -> Dict[str, str]:
    return {k: interpolate(v, contexts) or "" for k, v in mapping.items()}


# ----------------------------------------------------------------------
# Combinations
# ----------------------------------------------------------------------

def _matches(combo: Mapping[str, Any], entry: Mapping[str, Any]) -> bool:
    return all(k in combo and combo[k] == v for k, v in entry.items())


def combinations(job_id: str, strategy: Strategy) -> List[Combination]:
    """
    Cartesian product of all axes, first axis varying slowest,
    then `exclude` and `include` applied in that order.
    """
    for axis, values in strategy.axes:
        if not values:
            raise InvalidStrategy(f"matrix axis '{axis}' has no values", job=job_id)

    names = [axis for axis, _ in strategy.axes]
    combos: List[Dict[str, Any]] = []
    if strategy.axes:
        for values in itertools.product(*(vals for _, vals in strategy.axes)):
            combos.append(dict(zip(names, values)))

    combos = [c for c in combos if not any(_matches(c, ex) for ex in strategy.exclude)]

    for inc in strategy.include:
        # original axis values are never overwritten; added keys may be
        on_axes = {k: v for k, v in inc.items() if k in names}
        extra = {k: v for k, v in inc.items() if k not in names}
        targets = [c for c in combos if _matches(c, on_axes)]
        for c in targets:
            c.update(extra)
        if not targets:
            combos.append(dict(inc))

    if not combos:
        raise InvalidStrategy("matrix produced no combinations", job=job_id)
    return [tuple(c.items()) for c in combos]


def _label(job: Job, combo: Combination) -> str:
    if not combo:
        return job.display_name
    return f"{job.display_name} ({', '.join(_fmt(v) for _, v in combo)})"


def cache_key(job: Job, combo: Combination) -> str:
    h = hashlib.sha256()
    h.update(job.id.encode("utf-8"))
    h.update(b"\0")
    h.update(_json_dumps_stable([[k, v] for k, v in combo]).encode("utf-8"))
    return h.hexdigest()


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def _resolve_step(step: Step, contexts) -> Step:
    return replace(
        step,
        name=interpolate(step.name, contexts),
        run=interpolate(step.run, contexts),
        with_=_interpolate_map(step.with_, contexts),
        env=_interpolate_map(step.env, contexts),
        working_directory=interpolate(step.working_directory, contexts),
    )


def expand(job: Job, pipeline_env: Optional[Mapping[str, str]] = None) -> List[JobInstance]:
    """
    Expand a job into concrete instances, one per matrix combination.

    A job without a strategy yields exactly one instance.
    Raises InvalidStrategy if an axis is empty or nothing survives exclude.
    """
    combos: List[Combination] = combinations(job.id, job.strategy) if job.strategy else [()]

    instances: List[JobInstance] = []
    seen: Dict[str, int] = {}
    for index, combo in enumerate(combos):
        label = _label(job, combo)
        if label in seen:
            seen[label] += 1
            label = f"{label} #{seen[label]}"
        else:
            seen[label] = 1

        matrix_ctx = dict(combo)
        outer = dict(pipeline_env or {})
        job_env = _interpolate_map(job.env, {"matrix": matrix_ctx, "env": outer})
        scope = EnvironmentScope(outer, job_env)
        contexts = {"matrix": matrix_ctx, "env": scope.resolve()}

        instances.append(
            JobInstance(
                job=job,
                index=index,
                combination=combo,
                label=label,
                cache_key=cache_key(job, combo),
                steps=tuple(_resolve_step(s, contexts) for s in job.steps),
                scope=scope,
            )
        )
    return instances
