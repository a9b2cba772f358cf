from __future__ import annotations

import pytest

from matrixci.document import load_pipeline, parse_pipeline
from matrixci.model import Event, EventKind, Status
from matrixci.runner import plan, run_pipeline, select_jobs

from conftest import FakeExecutor


@pytest.fixture
def pipeline(example_ci):
    return load_pipeline(example_ci)


PUSH_SRC = Event(EventKind.PUSH, "master", ("src/main.rs",))


def test_push_to_master_with_source_change_succeeds(pipeline, tmp_path):
    fake = FakeExecutor()
    result = run_pipeline(pipeline, PUSH_SRC, executor=fake, workspace=tmp_path)

    assert result.succeeded
    assert result.exit_code == 0
    (job,) = result.jobs
    assert job.label == "Unit Test (stable)"
    assert [s.status for s in job.steps] == [Status.SUCCEEDED] * 4
    toolchain = next(c for c in fake.calls if "toolchain" in c.commands[0])
    assert "stable" in toolchain.commands[0]
    assert all(c.env["RUST_BACKTRACE"] == "1" for c in fake.calls)


def test_failing_test_step_fails_the_pipeline(pipeline, tmp_path):
    fake = FakeExecutor({"Run make format clip test": 2})
    result = run_pipeline(pipeline, PUSH_SRC, executor=fake, workspace=tmp_path)

    assert not result.succeeded
    assert result.exit_code == 1
    (job,) = result.jobs
    assert job.first_failure.step == "Run make format clip test"
    assert job.first_failure.exit_code == 2
    assert job.steps[-1].status == Status.SKIPPED
    assert "memory leak test" not in [c.step for c in fake.calls]


def test_docs_only_push_does_not_trigger(pipeline, tmp_path):
    fake = FakeExecutor()
    event = Event(EventKind.PUSH, "master", ("README.md",))
    result = run_pipeline(pipeline, event, executor=fake, workspace=tmp_path)

    assert result.succeeded
    assert not result.triggered
    assert result.jobs == ()
    assert fake.calls == []


def test_other_branch_does_not_trigger(pipeline, tmp_path):
    fake = FakeExecutor()
    result = run_pipeline(pipeline, Event(EventKind.PULL_REQUEST, "dev", ("src/a.rs",)), executor=fake)
    assert not result.triggered and fake.calls == []


MULTI = """
on: push
jobs:
  lint:
    runs-on: x
    steps: [{id: lint, run: lint}]
  build:
    runs-on: x
    strategy:
      matrix:
        v: []
    steps: [{id: build, run: build}]
  deploy:
    runs-on: x
    needs: build
    steps: [{id: deploy, run: deploy}]
"""


def test_invalid_strategy_is_scoped_to_its_job(tmp_path):
    fake = FakeExecutor()
    p = parse_pipeline(MULTI)
    result = run_pipeline(p, Event(EventKind.PUSH, "main"), executor=fake, workspace=tmp_path)

    by_job = {j.job_id: j for j in result.jobs}
    assert by_job["lint"].status == Status.SUCCEEDED
    assert by_job["build"].status == Status.FAILED
    assert by_job["build"].error_kind == "InvalidStrategy"
    assert by_job["deploy"].status == Status.SKIPPED
    assert result.exit_code == 2
    assert [c.step for c in fake.calls] == ["lint"]
    assert [j.job_id for j in result.jobs] == ["lint", "build", "deploy"]


def test_plan_does_not_execute():
    p = parse_pipeline(MULTI)
    planned = plan(p, Event(EventKind.PUSH, "main"))
    assert planned.triggered
    assert [i.label for i in planned.instances] == ["lint", "deploy"]
    assert [r.job_id for r in planned.invalid] == ["build"]


def test_select_jobs_pulls_in_upstream():
    p = parse_pipeline(MULTI)
    assert [j.id for j in select_jobs(p, list(p.jobs), ["deploy"])] == ["build", "deploy"]
    assert select_jobs(p, list(p.jobs), None) == list(p.jobs)
    with pytest.raises(ValueError, match="Unknown job"):
        select_jobs(p, list(p.jobs), ["nope"])


def test_only_runs_selected_jobs(tmp_path):
    p = parse_pipeline("""
on: push
jobs:
  a: {runs-on: x, steps: [{id: a, run: a}]}
  b: {runs-on: x, steps: [{id: b, run: b}]}
""")
    fake = FakeExecutor()
    result = run_pipeline(p, Event(EventKind.PUSH, "main"), executor=fake, workspace=tmp_path, only=["b"])
    assert [j.job_id for j in result.jobs] == ["b"]
    assert [c.step for c in fake.calls] == ["b"]


def test_non_required_job_does_not_fail_pipeline(tmp_path):
    p = parse_pipeline("""
on: push
jobs:
  flaky:
    runs-on: x
    continue-on-error: true
    steps: [{id: flaky, run: flaky}]
  ok: {runs-on: x, steps: [{id: ok, run: ok}]}
""")
    result = run_pipeline(p, Event(EventKind.PUSH, "main"), executor=FakeExecutor({"flaky": 1}), workspace=tmp_path)
    assert result.succeeded
    assert result.jobs[0].status == Status.FAILED
