# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from matrixci import settings
from matrixci.document import load_pipeline
from matrixci.errors import InvalidDocument
from matrixci.events import build_event, load_event
from matrixci.report import EXIT_INFRASTRUCTURE, write_json
from matrixci.runner import plan, run_pipeline
from matrixci.ui.console import Console, get_console, set_console


DEFAULT_PIPELINE_PATHS = (".github/workflows/ci.yml", ".github/workflows/ci.yaml", "ci.yml")


def discover_pipeline(path_arg: str | None) -> Path:
    """
    Pipeline file from argument or the usual locations.

    Raises:
        SystemExit: If no pipeline file can be found
    """
    console = get_console()

    if path_arg:
        path = Path(path_arg)
        if not path.exists():
            console.print_error(
                "Pipeline file not found",
                f"Could not find pipeline file: {path_arg}",
            )
            sys.exit(EXIT_INFRASTRUCTURE)
        return path

    for candidate in DEFAULT_PIPELINE_PATHS:
        path = Path(candidate)
        if path.exists():
            return path

    console.print_error(
        "No pipeline file found",
        "Could not find a pipeline file.",
        details=["Looked for:", *(f"  {c}" for c in DEFAULT_PIPELINE_PATHS)],
        suggestion="Specify one explicitly:\n  matrixci run path/to/ci.yml",
    )
    sys.exit(EXIT_INFRASTRUCTURE)


def _load(path_arg: str | None):
    console = get_console()
    path = discover_pipeline(path_arg)
    try:
        return path, load_pipeline(path)
    except InvalidDocument as e:
        console.print_error(
            "Invalid pipeline document",
            str(e),
            details=e.details.get("errors"),
        )
        sys.exit(EXIT_INFRASTRUCTURE)


EVENT_OPTIONS = (
    click.option("--event", "event_kind", default="push", show_default=True,
                 type=click.Choice(["push", "pull_request", "manual_dispatch", "workflow_dispatch"]),
                 help="Event kind"),
    click.option("--branch", default=None, help="Target branch (defaults to the current git branch with --from-git)"),
    click.option("--changed", "changed", multiple=True, help="Changed path (repeatable)"),
    click.option("--event-file", default=None, type=click.Path(exists=True, dir_okay=False),
                 help="JSON event descriptor; overrides the other event options"),
    click.option("--from-git/--no-from-git", default=False, help="Fill branch/changed paths from git"),
    click.option("--compare-ref", default=settings.COMPARE_REF, show_default=True, help="Git ref to diff against"),
    click.option("--job", "only", multiple=True, help="Only this job and what it needs (repeatable)"),
)


def event_options(fn):
    """Options describing the incoming event, shared by plan and run."""
    for option in reversed(EVENT_OPTIONS):
        fn = option(fn)
    return fn


def _event(event_kind, branch, changed, event_file, from_git, compare_ref, workspace="."):
    console = get_console()
    try:
        if event_file:
            return load_event(event_file)
        return build_event(
            event_kind,
            branch=branch,
            changed=changed,
            from_git=from_git,
            compare_ref=compare_ref,
            cwd=workspace,
        )
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        console.print_error(
            "Could not read git state",
            str(e),
            suggestion="Pass --branch/--changed explicitly or run inside a git repository.",
        )
        sys.exit(EXIT_INFRASTRUCTURE)
    except (ValueError, KeyError) as e:
        console.print_error("Invalid event", str(e))
        sys.exit(EXIT_INFRASTRUCTURE)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print the final summary")
def cli(debug, quiet):
    """matrixci: run declarative CI pipelines locally."""
    set_console(Console(debug=debug, quiet=quiet))


@cli.command()
@click.argument("pipeline", required=False)
def validate(pipeline):
    """Parse and validate a pipeline document."""
    console = get_console()
    path, doc = _load(pipeline)
    console.print_info(f"{path}: ok ({len(doc.jobs)} job(s))")


@cli.command("plan")
@click.argument("pipeline", required=False)
@event_options
def plan_cmd(pipeline, event_kind, branch, changed, event_file, from_git, compare_ref, only):
    """Show which job instances an event would run, without running them."""
    console = get_console()
    _, doc = _load(pipeline)
    event = _event(event_kind, branch, changed, event_file, from_git, compare_ref)

    try:
        p = plan(doc, event, only=only)
    except ValueError as e:
        console.print_error("Invalid job selection", str(e))
        sys.exit(EXIT_INFRASTRUCTURE)

    console.print_trigger(p.triggered, p.reason)
    if not p.triggered:
        return
    console.print_header(f"PLAN ({len(p.instances)} instance(s))")
    for inst in p.instances:
        console.print_plan_instance(inst.label, [s.display_name for s in inst.steps], inst.job.needs)
    for bad in p.invalid:
        console.print_plan_job_invalid(bad.label, bad.message or bad.error_kind or "invalid")
    if p.invalid:
        sys.exit(EXIT_INFRASTRUCTURE)


@cli.command()
@click.argument("pipeline", required=False)
@event_options
@click.option("--workspace", default=".", type=click.Path(file_okay=False), help="Directory steps run in")
@click.option("--workers", default=settings.WORKERS, type=click.IntRange(min=1),
              help="Max concurrent job instances (default: unbounded)")
@click.option("--infra-retries", default=settings.INFRA_RETRIES, type=click.IntRange(min=0), show_default=True,
              help="Retries for infrastructure errors")
@click.option("--retry-delay", default=settings.RETRY_DELAY, type=float, show_default=True,
              help="Seconds between infrastructure retries")
@click.option("--runner-label", "runner_labels", multiple=True,
              help="Runner label this machine provides (repeatable; default: any)")
@click.option("--report-json", default=None, type=click.Path(dir_okay=False), help="Write a JSON report here")
def run(pipeline, event_kind, branch, changed, event_file, from_git, compare_ref, only,
        workspace, workers, infra_retries, retry_delay, runner_labels, report_json):
    """Run a pipeline for an event."""
    console = get_console()
    _, doc = _load(pipeline)
    event = _event(event_kind, branch, changed, event_file, from_git, compare_ref, workspace)

    try:
        result = run_pipeline(
            doc,
            event,
            workspace=workspace,
            max_workers=workers,
            infra_retries=infra_retries,
            retry_delay=retry_delay,
            runner_labels=list(runner_labels) or settings.RUNNER_LABELS,
            only=only,
        )
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except ValueError as e:
        console.print_error("Invalid run options", str(e))
        sys.exit(EXIT_INFRASTRUCTURE)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_INFRASTRUCTURE)

    console.print_results(result)
    if report_json:
        written = write_json(result, report_json)
        console.print_debug(f"report written to {written}")
    sys.exit(result.exit_code)


if __name__ == "__main__":
    cli()
