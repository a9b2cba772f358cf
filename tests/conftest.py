from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Union

import pytest

from matrixci.executor import StepOutcome, StepRequest
from matrixci.ui.console import Console, set_console

ROOT = Path(__file__).resolve().parents[1]

Script = Union[int, Callable[[StepRequest], StepOutcome]]


class FakeExecutor:
    """
    Scripted executor keyed by step identifier.

    Values are exit codes or callables(request) -> StepOutcome.
    Unlisted steps succeed. Every request is recorded.
    """

    def __init__(self, script: Dict[str, Script] | None = None):
        self.script = dict(script or {})
        self.calls: List[StepRequest] = []
        self._lock = threading.Lock()

    def execute(self, request: StepRequest) -> StepOutcome:
        with self._lock:
            self.calls.append(request)
        action = self.script.get(request.step, 0)
        if callable(action):
            return action(request)
        return StepOutcome(exit_code=action)

    def steps_for(self, label: str) -> List[str]:
        return [c.step for c in self.calls if c.job == label]


def hang(seconds: float = 5.0):
    """A step that runs until cancelled (or `seconds` pass)."""
    def run(request: StepRequest) -> StepOutcome:
        request.cancelled.wait(seconds)
        return StepOutcome(exit_code=0)
    return run


def sleep_then(seconds: float, code: int = 0):
    def run(request: StepRequest) -> StepOutcome:
        time.sleep(seconds)
        return StepOutcome(exit_code=code)
    return run


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(quiet=True))
    yield
    set_console(Console())


@pytest.fixture
def example_ci() -> Path:
    return ROOT / "examples" / "ci.yml"
