import pytest

from matrixci.dag import build_dag, run_order, upstream_of
from matrixci.model import Job, Step


def job(job_id, index, *needs):
    return Job(id=job_id, index=index, steps=(Step(index=0, run="true"),), needs=tuple(needs))


def test_run_order_keeps_declaration_order_when_free():
    assert run_order([job("c", 0), job("a", 1), job("b", 2)]) == ["c", "a", "b"]


def test_run_order_honours_needs():
    jobs = [job("deploy", 0, "test", "build"), job("test", 1, "build"), job("build", 2), job("docs", 3)]
    assert run_order(jobs) == ["build", "test", "deploy", "docs"]


def test_cycle_is_rejected():
    with pytest.raises(ValueError, match="cycle"):
        run_order([job("a", 0, "b"), job("b", 1, "a"), job("c", 2)])


def test_build_dag_errors():
    with pytest.raises(ValueError, match="Duplicate"):
        build_dag([job("a", 0), job("a", 1)])
    with pytest.raises(ValueError, match="missing job 'x'"):
        build_dag([job("a", 0, "x")])


def test_upstream_is_transitive():
    jobs = [job("a", 0), job("b", 1, "a"), job("c", 2, "b"), job("d", 3)]
    assert upstream_of("c", jobs) == {"a", "b"}
    assert upstream_of("d", jobs) == set()
