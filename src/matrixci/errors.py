# errors.py
from __future__ import annotations

from typing import Optional


class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - per-instance result records
      - debugging without full tracebacks
    """
    kind = "CIError"

    def __init__(self, message: str, *, job: str | None = None, step: str | None = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.job = job
        self.step = step
        self.details = dict(details or {})

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class InvalidDocument(CIError):
    """Pipeline document failed to parse or validate. Fatal: nothing is scheduled."""
    kind = "InvalidDocument"

    def __init__(self, message: str, *, location: str | None = None, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.location = location

    def __str__(self) -> str:
        where = f" (at {self.location})" if self.location else ""
        return f"{self.kind}: {self.message}{where}"


class InvalidStrategy(CIError):
    """A matrix strategy cannot produce any combination. Fatal for that job only."""
    kind = "InvalidStrategy"


class StepFailure(CIError):
    kind = "StepFailure"

    def __init__(self, job: str, step: str, exit_code: int, output: str | None = None):
        super().__init__(f"step '{step}' failed (exit={exit_code})", job=job, step=step)
        self.exit_code = exit_code
        self.output = output


class StepTimeout(CIError):
    """Wall-clock budget exceeded while a step was running."""
    kind = "Timeout"


class InfrastructureError(CIError):
    """Executor/runner could not run the step at all (as opposed to the step failing)."""
    kind = "InfrastructureError"
