# dag.py
from __future__ import annotations

import heapq
from typing import Dict, Iterable, List, Set, Tuple

from .model import Job


def build_dag(jobs: Iterable[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Adjacency (need -> dependants) and in-degree maps for the `needs` graph.

    Raises ValueError on duplicate ids or a `needs` entry naming no job.
    """
    jobs = list(jobs)
    ids = [j.id for j in jobs]
    if len(set(ids)) != len(ids):
        dupes = sorted({n for n in ids if ids.count(n) > 1})
        raise ValueError(f"Duplicate job ids found: {dupes}")

    id_set = set(ids)
    adj: Dict[str, Set[str]] = {n: set() for n in ids}
    indeg: Dict[str, int] = {n: 0 for n in ids}

    for job in jobs:
        for need in job.needs:
            if need not in id_set:
                raise ValueError(
                    f"Job '{job.id}' needs missing job '{need}'. "
                    f"Known jobs: {sorted(id_set)}"
                )
            # Edge need -> job.id (need must run before job)
            if job.id not in adj[need]:
                adj[need].add(job.id)
                indeg[job.id] += 1

    return adj, indeg


def run_order(jobs: Iterable[Job]) -> List[str]:
    """
    Job ids in an order that honours `needs`.

    Among jobs that are ready at the same time, declaration order wins,
    so a pipeline without `needs` keeps its document order.
    """
    jobs = list(jobs)
    adj, indeg = build_dag(jobs)
    position = {j.id: i for i, j in enumerate(jobs)}
    indeg = dict(indeg)

    ready = [(position[n], n) for n, d in indeg.items() if d == 0]
    heapq.heapify(ready)
    order: List[str] = []
    while ready:
        _, node = heapq.heappop(ready)
        order.append(node)
        for child in adj[node]:
            indeg[child] -= 1
            if indeg[child] == 0:
                heapq.heappush(ready, (position[child], child))

    if len(order) != len(indeg):
        stuck = [n for n in position if indeg[n] > 0]
        raise ValueError(f"Job graph has a cycle. Stuck jobs: {stuck}")
    return order


def upstream_of(job_id: str, jobs: Iterable[Job]) -> Set[str]:
    """All transitive `needs` of job_id."""
    by_id = {j.id: j for j in jobs}
    seen: Set[str] = set()
    stack = list(by_id[job_id].needs)
    while stack:
        n = stack.pop()
        if n in seen:
            continue
        seen.add(n)
        stack.extend(by_id[n].needs)
    return seen
