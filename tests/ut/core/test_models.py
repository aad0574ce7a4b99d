"""核心数据模型测试"""

from __future__ import annotations

import pytest

from provisioner.core.models import (
    ErrorKind,
    ExecutionContext,
    RunReport,
    StepError,
    StepResult,
    StepStatus,
)


class TestStepResult:
    def test_failed_requires_error(self) -> None:
        with pytest.raises(ValueError):
            StepResult(step="a", status=StepStatus.FAILED)

    def test_error_only_on_failed(self) -> None:
        with pytest.raises(ValueError):
            StepResult(
                step="a", status=StepStatus.COMPLETED,
                error=StepError(kind=ErrorKind.ACTION_FAILED, message="x"),
            )

    @pytest.mark.parametrize(("status", "ok"), [
        (StepStatus.SKIPPED, True), (StepStatus.COMPLETED, True),
    ])
    def test_ok(self, status: StepStatus, ok: bool) -> None:
        assert StepResult(step="a", status=status).ok is ok


class TestRunReport:
    def test_empty_report_is_success(self) -> None:
        assert RunReport().success is True

    def test_not_run_is_not_success(self) -> None:
        assert RunReport(not_run=["x"]).success is False

    def test_to_dict(self) -> None:
        report = RunReport(
            run_log=[
                StepResult(step="a", status=StepStatus.SKIPPED),
                StepResult(
                    step="b", status=StepStatus.FAILED,
                    error=StepError(kind=ErrorKind.ACTION_FAILED, message="rc=1", diagnostic="boom"),
                ),
            ],
            not_run=["c"],
        )
        data = report.to_dict()
        assert data["success"] is False
        assert [r["status"] for r in data["run_log"]] == ["Skipped", "Failed"]
        assert data["run_log"][1]["error"]["kind"] == "ActionFailed"
        assert data["run_log"][1]["error"]["diagnostic"] == "boom"
        assert data["not_run"] == ["c"]
        assert report.terminal_failure.step == "b"


class TestExecutionContext:
    def test_with_env_merges(self) -> None:
        ctx = ExecutionContext(user="frappe", cwd="/home/frappe", env=(("A", "1"),))
        new = ctx.with_env(B="2", A="3")
        assert dict(new.env) == {"A": "3", "B": "2"}
        assert new.user == "frappe" and new.cwd == "/home/frappe"
        assert dict(ctx.env) == {"A": "1"}
