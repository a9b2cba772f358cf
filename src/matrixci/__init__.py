from .document import load_pipeline, parse_pipeline
from .executor import ActionRegistry, ShellStepExecutor, StepOutcome, StepRequest
from .model import Event, EventKind, Job, JobInstance, Pipeline, PipelineResult, Status, Step
from .runner import plan, run_pipeline

__all__ = [
    "load_pipeline", "parse_pipeline",
    "ActionRegistry", "ShellStepExecutor", "StepOutcome", "StepRequest",
    "Event", "EventKind", "Job", "JobInstance", "Pipeline", "PipelineResult", "Status", "Step",
    "plan", "run_pipeline",
]
