"""步骤执行器 - 单步执行与失败归类"""

from __future__ import annotations

import logging
import subprocess
import time

from provisioner.core.exceptions import ExecutionError, ProvisionError
from provisioner.core.models import ErrorKind, StepError, StepResult, StepStatus
from provisioner.core.step import Step

logger = logging.getLogger(__name__)

# 外部工具的常规失败；其余异常同样在步骤边界归类，但额外记录堆栈
EXPECTED_ERRORS = (ProvisionError, OSError, RuntimeError, ValueError, subprocess.SubprocessError)


def _diagnostic(exc: BaseException) -> str:
    if isinstance(exc, ExecutionError) and exc.diagnostic:
        return exc.diagnostic
    return str(exc)


def _log_failure(step: Step, what: str, exc: Exception) -> None:
    if isinstance(exc, EXPECTED_ERRORS):
        logger.error("[%s] %s: %s", step.name, what, exc)
    else:
        logger.exception("[%s] %s（意外异常 %s）: %s", step.name, what, type(exc).__name__, exc)


class StepRunner:
    """执行单个步骤：检查 → 跳过或执行 → 校验

    自身不持有可变状态，副作用全部来自 step.action。
    """

    def run(self, step: Step) -> StepResult:
        start = time.monotonic()

        try:
            satisfied = step.precondition()
        except Exception as e:  # noqa: BLE001
            _log_failure(step, "无法确定当前状态", e)
            return self._failed(step, start, ErrorKind.PRECONDITION_CHECK_FAILED, e)

        if satisfied:
            logger.info("[%s] 已满足，跳过", step.name)
            return StepResult(
                step=step.name, status=StepStatus.SKIPPED,
                duration=time.monotonic() - start,
            )

        logger.info("[%s] 开始执行%s", step.name, f": {step.description}" if step.description else "")
        try:
            step.action()
        except Exception as e:  # noqa: BLE001
            _log_failure(step, "执行失败", e)
            return self._failed(step, start, ErrorKind.ACTION_FAILED, e)

        try:
            verified = step.verify()
        except Exception as e:  # noqa: BLE001
            _log_failure(step, "校验出错", e)
            return self._failed(step, start, ErrorKind.VERIFICATION_FAILED, e)

        if not verified:
            logger.error("[%s] 执行返回成功，但校验未通过", step.name)
            return StepResult(
                step=step.name, status=StepStatus.FAILED,
                error=StepError(
                    kind=ErrorKind.VERIFICATION_FAILED,
                    message="外部工具报告成功，但目标状态未达成",
                ),
                duration=time.monotonic() - start,
            )

        duration = time.monotonic() - start
        logger.info("[%s] 完成 (%.1f秒)", step.name, duration)
        return StepResult(step=step.name, status=StepStatus.COMPLETED, duration=duration)

    @staticmethod
    def _failed(step: Step, start: float, kind: ErrorKind, exc: BaseException) -> StepResult:
        return StepResult(
            step=step.name, status=StepStatus.FAILED,
            error=StepError(kind=kind, message=str(exc), diagnostic=_diagnostic(exc)),
            duration=time.monotonic() - start,
        )
