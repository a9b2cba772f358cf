# env.py
from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Mapping, Optional

# Always present below the pipeline layer.
BASE_ENV: Mapping[str, str] = MappingProxyType({"CI": "true"})


class EnvironmentScope:
    """
    Nested variable scopes: pipeline < job < step.

    A more specific layer overrides an outer one for the same key.
    Every resolve() hands out a fresh dict, so callers never share state.
    """

    LEVELS = ("base", "pipeline", "job", "step")

    def __init__(
        self,
        pipeline: Optional[Mapping[str, str]] = None,
        job: Optional[Mapping[str, str]] = None,
        step: Optional[Mapping[str, str]] = None,
        *,
        base: Optional[Mapping[str, str]] = None,
    ):
        self._layers = (
            dict(BASE_ENV if base is None else base),
            dict(pipeline or {}),
            dict(job or {}),
            dict(step or {}),
        )

    def layer(self, level: str) -> Dict[str, str]:
        return dict(self._layers[self.LEVELS.index(level)])

    def with_step(self, step: Optional[Mapping[str, str]]) -> "EnvironmentScope":
        """Same outer layers, new step layer."""
        base, pipeline, job, _ = self._layers
        return EnvironmentScope(pipeline, job, step, base=base)

    def resolve(self) -> Dict[str, str]:
        merged: Dict[str, str] = {}
        for layer in self._layers:
            merged.update(layer)
        return merged

    def get(self, key: str, default: str | None = None) -> str | None:
        for layer in reversed(self._layers):
            if key in layer:
                return layer[key]
        return default

    def __contains__(self, key: str) -> bool:
        return any(key in layer for layer in self._layers)

    def __repr__(self) -> str:
        return f"EnvironmentScope({self.resolve()!r})"
