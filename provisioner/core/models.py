"""核心数据模型

步骤执行状态、错误分类、执行结果与执行上下文集中定义，
runner / pipeline / orchestrator 统一从此处导入。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

# =========================================================================
# 状态与错误分类
# =========================================================================


class StepStatus(str, Enum):
    SKIPPED = "Skipped"
    COMPLETED = "Completed"
    FAILED = "Failed"
    NOT_RUN = "NotRun"


class ErrorKind(str, Enum):
    """共享错误分类，工具相关的异常在步骤边界被归入其中之一"""

    PRECONDITION_CHECK_FAILED = "PreconditionCheckFailed"
    ACTION_FAILED = "ActionFailed"
    VERIFICATION_FAILED = "VerificationFailed"
    CYCLIC_DEPENDENCY = "CyclicDependency"
    PERMISSION_DENIED = "PermissionDenied"


class FailurePolicy(str, Enum):
    STOP_ON_FIRST_FAILURE = "stop"
    CONTINUE_AND_REPORT = "continue"


# =========================================================================
# 执行结果
# =========================================================================


@dataclass(frozen=True)
class StepError:
    """步骤失败详情"""

    kind: ErrorKind
    message: str
    diagnostic: str = ""  # 外部工具原始输出（stderr 等）


@dataclass(frozen=True)
class StepResult:
    """单个步骤的执行结果"""

    step: str
    status: StepStatus
    error: StepError | None = None
    duration: float = 0.0  # 秒

    def __post_init__(self) -> None:
        if (self.status == StepStatus.FAILED) != (self.error is not None):
            raise ValueError(f"error 只能且必须在 Failed 状态下给出: {self.step}")

    @property
    def ok(self) -> bool:
        return self.status in (StepStatus.SKIPPED, StepStatus.COMPLETED)


@dataclass
class RunReport:
    """一次管线执行的报告

    run_log 只追加，顺序即执行顺序；从未启动的步骤记录在 not_run 中。
    """

    run_log: list[StepResult] = field(default_factory=list)
    not_run: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failures(self) -> list[StepResult]:
        return [r for r in self.run_log if r.status == StepStatus.FAILED]

    @property
    def terminal_failure(self) -> StepResult | None:
        """首个失败步骤（StopOnFirstFailure 下即终止管线的那一步）"""
        failures = self.failures
        return failures[0] if failures else None

    @property
    def success(self) -> bool:
        return not self.failures and not self.not_run and not self.cancelled

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "cancelled": self.cancelled,
            "run_log": [
                {
                    "step": r.step,
                    "status": r.status.value,
                    "duration": round(r.duration, 3),
                    "error": {
                        "kind": r.error.kind.value,
                        "message": r.error.message,
                        "diagnostic": r.error.diagnostic,
                    } if r.error else None,
                }
                for r in self.run_log
            ],
            "not_run": list(self.not_run),
        }


# =========================================================================
# 执行上下文
# =========================================================================


@dataclass(frozen=True)
class ExecutionContext:
    """外部命令的执行身份 - 用户、工作目录、附加环境变量

    user 为空表示以当前（root）身份执行。
    """

    user: str = ""
    cwd: str = ""
    env: tuple[tuple[str, str], ...] = ()

    def with_env(self, **extra: str) -> ExecutionContext:
        merged = dict(self.env)
        merged.update(extra)
        return ExecutionContext(user=self.user, cwd=self.cwd, env=tuple(merged.items()))
