from __future__ import annotations

import json

from matrixci.model import JobResult, Status, StepResult
from matrixci.report import EXIT_FAILURE, EXIT_INFRASTRUCTURE, EXIT_OK, exit_code_for, summarize, to_dict, write_json


def result(label, order, status=Status.SUCCEEDED, *, kind=None, required=True, steps=()):
    return JobResult(
        job_id=label.split(" ")[0],
        label=label,
        order=order,
        status=status,
        steps=tuple(steps),
        error_kind=kind,
        required=required,
    )


def test_results_are_ordered_by_declaration_not_completion():
    done = [result("b", (1, 0)), result("a (2)", (0, 1)), result("a (1)", (0, 0))]
    summary = summarize(done)
    assert [j.label for j in summary.jobs] == ["a (1)", "a (2)", "b"]
    assert summary.succeeded and summary.exit_code == EXIT_OK


def test_any_required_failure_fails_the_pipeline():
    summary = summarize([result("a", (0, 0)), result("b", (1, 0), Status.FAILED, kind="StepFailure")])
    assert not summary.succeeded
    assert summary.exit_code == EXIT_FAILURE


def test_timeouts_and_skips_are_failures():
    assert exit_code_for([result("a", (0, 0), Status.TIMED_OUT, kind="Timeout")]) == EXIT_FAILURE
    assert exit_code_for([result("a", (0, 0), Status.SKIPPED)]) == EXIT_FAILURE


def test_infrastructure_beats_step_failure():
    results = [
        result("a", (0, 0), Status.FAILED, kind="StepFailure"),
        result("b", (1, 0), Status.FAILED, kind="InfrastructureError"),
    ]
    assert exit_code_for(results) == EXIT_INFRASTRUCTURE
    assert exit_code_for([result("c", (0, 0), Status.FAILED, kind="InvalidStrategy")]) == EXIT_INFRASTRUCTURE


def test_non_required_failures_are_ignored():
    summary = summarize([
        result("a", (0, 0)),
        result("b", (1, 0), Status.FAILED, kind="InfrastructureError", required=False),
    ])
    assert summary.succeeded
    assert summary.jobs[1].status == Status.FAILED


def test_empty_result_is_success():
    summary = summarize([], triggered=False)
    assert summary.succeeded and summary.jobs == () and not summary.triggered


def test_to_dict_and_write_json(tmp_path):
    steps = [
        StepResult("checkout", Status.SUCCEEDED, exit_code=0),
        StepResult("test", Status.FAILED, exit_code=101),
        StepResult("valgrind", Status.SKIPPED),
    ]
    summary = summarize([result("ut (stable)", (0, 0), Status.FAILED, kind="StepFailure", steps=steps)])

    data = to_dict(summary)
    assert data["verdict"] == "failure"
    assert data["exit_code"] == 1
    (job,) = data["jobs"]
    assert job["first_failure"] == {"step": "test", "exit_code": 101}
    assert [s["status"] for s in job["steps"]] == ["succeeded", "failed", "skipped"]
    assert data["counts"]["failed"] == 1
    assert data["counts"]["timed-out"] == 0

    path = write_json(summary, tmp_path / "out" / "report.json")
    assert json.loads(path.read_text()) == data
