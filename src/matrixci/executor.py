# executor.py
"""
Step executor boundary.

The scheduler never interprets step content. It hands a StepRequest
(commands, environment, working directory, timeout, cancel event) to a
StepExecutor and gets back a StepOutcome.

Executors signal:
  - a non-zero exit via StepOutcome.exit_code
  - an exceeded timeout via StepTimeout
  - "could not run at all" via InfrastructureError
"""
from __future__ import annotations

import os
import shlex
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Protocol

from .errors import InfrastructureError, StepTimeout
from .model import Step

OUTPUT_TAIL = 4000

SHELLS: Dict[str, List[str]] = {
    "bash": ["bash", "--noprofile", "--norc", "-eo", "pipefail", "-c"],
    "sh": ["sh", "-e", "-c"],
    "python": ["python3", "-c"],
}
DEFAULT_SHELL = "bash"


@dataclass(frozen=True)
class StepRequest:
    job: str                 # instance label
    step: str                # step identifier
    commands: List[str]
    env: Dict[str, str]
    working_directory: Path
    timeout: float           # seconds left in the instance budget
    shell: str = DEFAULT_SHELL
    cancelled: threading.Event = field(default_factory=threading.Event, compare=False)


@dataclass(frozen=True)
class StepOutcome:
    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class StepExecutor(Protocol):
    def execute(self, request: StepRequest) -> StepOutcome: ...


# ----------------------------------------------------------------------
# Actions
# ----------------------------------------------------------------------

ActionHandler = Callable[[Mapping[str, str]], List[str]]


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _checkout(inputs: Mapping[str, str]) -> List[str]:
    # the workspace is the checkout; make sure of it and pull submodules
    cmds = ["git rev-parse --is-inside-work-tree"]
    submodules = (inputs.get("submodules") or "").strip().lower()
    if submodules == "recursive":
        cmds.append("git submodule update --init --recursive")
    elif _truthy(submodules):
        cmds.append("git submodule update --init")
    return cmds


def _rust_toolchain(inputs: Mapping[str, str]) -> List[str]:
    toolchain = inputs.get("toolchain") or "stable"
    cmds = [f"rustup toolchain install {shlex.quote(toolchain)} --profile minimal"]
    if _truthy(inputs.get("override")) or _truthy(inputs.get("default")):
        cmds.append(f"rustup default {shlex.quote(toolchain)}")
    components = (inputs.get("components") or "").replace(",", " ").split()
    if components:
        cmds.append(
            f"rustup component add --toolchain {shlex.quote(toolchain)} "
            + " ".join(shlex.quote(c) for c in components)
        )
    return cmds


class ActionRegistry:
    """Maps action names (without '@ref') to handlers producing shell commands."""

    def __init__(self, handlers: Optional[Mapping[str, ActionHandler]] = None):
        self._handlers: Dict[str, ActionHandler] = dict(handlers or {})

    @classmethod
    def default(cls) -> "ActionRegistry":
        return cls({
            "actions/checkout": _checkout,
            "actions-rs/toolchain": _rust_toolchain,
        })

    def register(self, name: str, handler: ActionHandler) -> None:
        self._handlers[name] = handler

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def commands_for(self, step: Step) -> List[str]:
        handler = self._handlers.get(step.action or "")
        if handler is None:
            raise InfrastructureError(
                f"no handler for action '{step.uses}'",
                step=step.ident,
                details={"known": ", ".join(sorted(self._handlers))},
            )
        return handler(step.with_)


def step_commands(step: Step, actions: ActionRegistry) -> List[str]:
    """Ordered command list for a step: the run block, or what its action translates to."""
    if step.run is not None:
        return [step.run]
    return actions.commands_for(step)


# ----------------------------------------------------------------------
# Shell executor
# ----------------------------------------------------------------------

class ShellStepExecutor:
    """
    Runs each command in its own shell process.

    - env: process environment overlaid with the resolved scope
    - each command runs in a new session so a timeout can kill the whole tree
    - output is captured; only the tail is kept
    """

    def __init__(self, inherit_env: bool = True):
        self.inherit_env = inherit_env

    def execute(self, request: StepRequest) -> StepOutcome:
        cwd = request.working_directory
        if not cwd.is_dir():
            raise InfrastructureError(
                f"working directory not found: {cwd}", job=request.job, step=request.step
            )
        argv = SHELLS.get(request.shell)
        if argv is None:
            raise InfrastructureError(
                f"unsupported shell '{request.shell}'", job=request.job, step=request.step
            )

        env = os.environ.copy() if self.inherit_env else {}
        env.update(request.env)

        budget = request.timeout
        chunks: List[str] = []
        with _CancelWatcher(request.cancelled) as watcher:
            for cmd in request.commands:
                if request.cancelled.is_set():
                    raise StepTimeout("step cancelled", job=request.job, step=request.step)
                code, out, used = self._run_one(argv + [cmd], cwd, env, budget, request, watcher)
                chunks.append(out)
                budget -= used
                if code != 0:
                    return StepOutcome(exit_code=code, output="".join(chunks)[-OUTPUT_TAIL:])
        return StepOutcome(exit_code=0, output="".join(chunks)[-OUTPUT_TAIL:])

    def _run_one(self, argv, cwd: Path, env, timeout: float, request: StepRequest, watcher: "_CancelWatcher"):
        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(cwd),
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise InfrastructureError(
                f"shell not available: {argv[0]}", job=request.job, step=request.step
            ) from e
        except OSError as e:
            raise InfrastructureError(str(e), job=request.job, step=request.step) from e

        watcher.proc = proc
        try:
            out, _ = proc.communicate(timeout=max(timeout, 0.0))
        except subprocess.TimeoutExpired:
            _kill_tree(proc)
            proc.communicate()
            raise StepTimeout(
                f"exceeded {timeout:.1f}s budget", job=request.job, step=request.step
            )
        return proc.returncode, out or "", time.monotonic() - started


def _kill_tree(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class _CancelWatcher:
    """
    Kills the running command's process group once the request is cancelled.

    One thread per execute() call, stopped and joined when the step returns.
    """

    POLL = 0.05

    def __init__(self, cancelled: threading.Event):
        self.cancelled = cancelled
        self.proc: Optional[subprocess.Popen] = None
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._watch, daemon=True)

    def __enter__(self) -> "_CancelWatcher":
        self._thread.start()
        return self

    def __exit__(self, *exc) -> None:
        self._stop.set()
        self._thread.join()

    def _watch(self) -> None:
        while not self._stop.wait(self.POLL):
            proc = self.proc
            if self.cancelled.is_set() and proc is not None and proc.poll() is None:
                _kill_tree(proc)
