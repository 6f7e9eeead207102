"""Tests for run conditions."""

from __future__ import annotations

import pytest

from shipci.conditions import (
    Always,
    And,
    Failure,
    Not,
    Or,
    OutputEquals,
    StatusIs,
    Success,
    effective,
    parse_condition,
    should_run,
)
from shipci.exceptions import ConditionError
from shipci.model import JobResult, JobStatus


def result(name: str, status: JobStatus, **outputs: str) -> JobResult:
    return JobResult(name=name, status=status, outputs=dict(outputs))


OK = JobStatus.SUCCEEDED
FAILED = JobStatus.FAILED
SKIPPED = JobStatus.SKIPPED


def test_no_condition_requires_all_dependencies_to_succeed():
    assert should_run(None, {"a": result("a", OK), "b": result("b", OK)})
    assert not should_run(None, {"a": result("a", OK), "b": result("b", FAILED)})
    assert not should_run(None, {"a": result("a", SKIPPED)})


def test_no_dependencies_always_runs_by_default():
    assert should_run(None, {})


def test_output_condition_is_anded_with_success():
    cond = OutputEquals("check", "is_valid", "true")
    assert effective(cond) == And((Success(), cond))

    needs = {"check": result("check", OK, is_valid="true"), "test": result("test", OK)}
    assert should_run(cond, needs)

    needs["test"] = result("test", FAILED)
    assert not should_run(cond, needs)


def test_output_condition_false_when_value_differs():
    cond = OutputEquals("check", "is_valid", "true")
    assert not should_run(cond, {"check": result("check", OK, is_valid="false")})


def test_outputs_of_failed_job_are_not_visible():
    cond = OutputEquals("check", "is_valid", "true") | Always()
    failed = result("check", FAILED, is_valid="true")
    assert not OutputEquals("check", "is_valid", "true").evaluate({"check": failed})
    assert should_run(cond, {"check": failed})


def test_status_functions():
    needs = {"a": result("a", OK), "b": result("b", FAILED)}
    assert Failure().evaluate(needs)
    assert not Success().evaluate(needs)
    assert Always().evaluate(needs)
    assert StatusIs("b", FAILED).evaluate(needs)
    assert not StatusIs("a", FAILED).evaluate(needs)


def test_explicit_status_check_is_not_anded_with_success():
    cond = Failure()
    assert effective(cond) is cond
    assert should_run(cond, {"a": result("a", FAILED)})


def test_operators_build_trees():
    a, b = Success(), Failure()
    assert (a & b) == And((a, b))
    assert (a | b) == Or((a, b))
    assert ~a == Not(a)


def test_jobs_referenced():
    cond = OutputEquals("x", "k", "v") & (StatusIs("y", OK) | Success())
    assert cond.jobs() == {"x", "y"}


# ---------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------

def test_parse_output_comparison():
    cond = parse_condition("needs.check_version.outputs.is_valid == 'true'")
    assert cond == OutputEquals("check_version", "is_valid", "true")


def test_parse_wrapped_expression_with_status_function():
    cond = parse_condition("${{ needs.check.outputs.is_valid == 'true' && success() }}")
    assert cond == And((OutputEquals("check", "is_valid", "true"), Success()))


def test_parse_not_equal_and_double_quotes():
    cond = parse_condition('needs.check.outputs.channel != "beta"')
    assert cond == OutputEquals("check", "channel", "beta", negate=True)


def test_parse_precedence_and_grouping():
    cond = parse_condition("always() || failure() && !success()")
    assert cond == Or((Always(), And((Failure(), Not(Success())))))

    grouped = parse_condition("(always() || failure()) && success()")
    assert grouped == And((Or((Always(), Failure())), Success()))


def test_parse_result_reference():
    cond = parse_condition("needs.test.result == 'failure'")
    assert cond == StatusIs("test", FAILED)


def test_parse_bare_true_literal():
    assert parse_condition("needs.a.outputs.ok == true") == OutputEquals("a", "ok", "true")


@pytest.mark.parametrize(
    "text",
    [
        "",
        "${{ }}",
        "needs.a.outputs.k ==",
        "needs.a.outputs.k = 'x'",
        "success(",
        "env.FOO == 'x'",
        "needs.a.result == 'exploded'",
        "success() success()",
    ],
)
def test_parse_errors(text):
    with pytest.raises(ConditionError):
        parse_condition(text)
