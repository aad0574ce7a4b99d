"""步骤管线（拓扑排序 + 顺序执行 + Observer 钩子）

Pipeline 在执行任何步骤前先解析依赖顺序，依赖图有环即以
CyclicDependencyError 失败。执行严格串行，取消只在步骤边界检查。

用法:
    pipeline = Pipeline(steps)
    pipeline.subscribe(my_hook)                 # 可选：每步结果回调
    report = pipeline.execute(FailurePolicy.STOP_ON_FIRST_FAILURE)
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable

from provisioner.core.exceptions import ConfigError, CyclicDependencyError
from provisioner.core.models import FailurePolicy, RunReport, StepResult, StepStatus
from provisioner.core.runner import StepRunner
from provisioner.core.step import Step

logger = logging.getLogger(__name__)


def resolve_order(steps: Iterable[Step]) -> list[Step]:
    """计算满足 depends_on 的执行顺序，平局时保持声明顺序"""
    declared = list(steps)
    by_name: dict[str, Step] = {}
    for s in declared:
        if s.name in by_name:
            raise ConfigError(f"步骤名重复: {s.name}")
        by_name[s.name] = s

    for s in declared:
        unknown = sorted(s.depends_on - by_name.keys())
        if unknown:
            raise ConfigError(f"步骤 '{s.name}' 依赖未定义的步骤: {unknown}")

    ordered: list[Step] = []
    placed: set[str] = set()
    pending = declared
    while pending:
        ready = next((s for s in pending if s.depends_on <= placed), None)
        if ready is None:
            raise CyclicDependencyError(_find_cycle(pending))
        ordered.append(ready)
        placed.add(ready.name)
        pending = [s for s in pending if s.name != ready.name]
    return ordered


def _find_cycle(pending: list[Step]) -> list[str]:
    """在剩余（无法排序的）步骤中找出一个环，用于错误提示"""
    graph = {s.name: sorted(s.depends_on) for s in pending}
    path: list[str] = []
    on_path: set[str] = set()
    visited: set[str] = set()

    def visit(name: str) -> list[str] | None:
        if name in on_path:
            return path[path.index(name):] + [name]
        if name in visited or name not in graph:
            return None
        visited.add(name)
        on_path.add(name)
        path.append(name)
        for dep in graph[name]:
            cycle = visit(dep)
            if cycle:
                return cycle
        path.pop()
        on_path.discard(name)
        return None

    for s in pending:
        cycle = visit(s.name)
        if cycle:
            return cycle
    return [s.name for s in pending]


class PipelineHook(ABC):
    """管线观察者钩子基类，实现 on_result 即可接入管线"""

    @abstractmethod
    def on_result(self, result: StepResult) -> None:
        """接收单个步骤的执行结果"""


class Pipeline:
    """有序步骤管线

    每次调用构造一次、执行一次；幂等性完全由各步骤的 precondition 从现场推导，
    不依赖上一次的运行记录。
    """

    def __init__(
        self,
        steps: Iterable[Step],
        *,
        runner: StepRunner | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.steps = list(steps)
        self.runner = runner or StepRunner()
        self.cancel_event = cancel_event
        self._hooks: list[PipelineHook] = []

    def subscribe(self, hook: PipelineHook) -> None:
        """注册步骤结果钩子"""
        self._hooks.append(hook)

    def order(self) -> list[Step]:
        return resolve_order(self.steps)

    def execute(
        self, policy: FailurePolicy = FailurePolicy.STOP_ON_FIRST_FAILURE,
    ) -> RunReport:
        """按依赖顺序执行全部步骤

        依赖图错误在任何步骤运行之前抛出 ConfigError / CyclicDependencyError。
        """
        ordered = self.order()
        report = RunReport()
        finished: dict[str, StepStatus] = {}

        logger.info(
            "管线开始: %d 个步骤, 策略=%s", len(ordered), policy.value,
        )
        for idx, step in enumerate(ordered):
            if self.cancel_event is not None and self.cancel_event.is_set():
                logger.warning("收到取消请求，停止于步骤 '%s' 之前", step.name)
                report.cancelled = True
                report.not_run.extend(s.name for s in ordered[idx:])
                break

            blocked = [
                d for d in sorted(step.depends_on)
                if finished.get(d) not in (StepStatus.COMPLETED, StepStatus.SKIPPED)
            ]
            if blocked:
                logger.warning("步骤 '%s' 的依赖未完成 %s，不执行", step.name, blocked)
                finished[step.name] = StepStatus.NOT_RUN
                report.not_run.append(step.name)
                continue

            result = self.runner.run(step)
            report.run_log.append(result)
            finished[step.name] = result.status
            self._notify(result)

            if (
                result.status == StepStatus.FAILED
                and policy == FailurePolicy.STOP_ON_FIRST_FAILURE
            ):
                report.not_run.extend(s.name for s in ordered[idx + 1:])
                break

        logger.info(
            "管线结束: 执行=%d, 失败=%d, 未执行=%d",
            len(report.run_log), len(report.failures), len(report.not_run),
        )
        return report

    def _notify(self, result: StepResult) -> None:
        for hook in self._hooks:
            try:
                hook.on_result(result)
            except (ValueError, RuntimeError, OSError, TypeError):
                logger.exception("管线钩子执行失败: %s", type(hook).__name__)
