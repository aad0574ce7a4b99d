"""安装编排器 - 权限检查 → 构建步骤 → 执行管线 → 汇总访问信息

职责：
- 在任何步骤之前检查一次权限
- 按预设 / 目标从步骤目录中选出步骤并解析顺序
- 执行管线，成功后生成访问信息
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from provisioner.core.config import ProvisionConfig
from provisioner.core.pipeline import Pipeline, PipelineHook, resolve_order
from provisioner.core.privilege import require_privilege
from provisioner.core.protocols import ExternalToolAdapter
from provisioner.core.step import Step
from provisioner.services.orchestrator.models import (
    AccessSummary,
    ProvisionPlan,
    ProvisionReport,
)
from provisioner.services.orchestrator.steps import build_catalog, select_steps, steps_for_preset

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[ProvisionConfig], ExternalToolAdapter]


def _default_adapter(config: ProvisionConfig) -> ExternalToolAdapter:
    from provisioner.services.tool_adapter import ShellToolAdapter
    return ShellToolAdapter(config)


class ProvisionOrchestrator:
    """安装编排器

    适配器延迟到权限检查通过后才创建，权限不足时不会触碰任何外部工具。
    """

    def __init__(
        self,
        config: ProvisionConfig,
        *,
        adapter_factory: AdapterFactory | None = None,
        cancel_event: threading.Event | None = None,
        privilege_check: Callable[[], None] = require_privilege,
    ) -> None:
        self.config = config
        self._adapter_factory = adapter_factory or _default_adapter
        self.cancel_event = cancel_event
        self._privilege_check = privilege_check
        self._hooks: list[PipelineHook] = []

    def subscribe(self, hook: PipelineHook) -> None:
        self._hooks.append(hook)

    def select(self, plan: ProvisionPlan, adapter: ExternalToolAdapter) -> list[Step]:
        """按计划选出步骤并解析执行顺序（依赖图错误在此抛出）"""
        catalog = build_catalog(self.config, adapter)
        if plan.targets:
            steps = select_steps(catalog, plan.targets)
        else:
            steps = steps_for_preset(catalog, plan.preset)
        return resolve_order(steps)

    def preview(self, plan: ProvisionPlan) -> list[Step]:
        """只解析执行顺序，不检查权限，不调用任何外部工具"""
        self.config.validate(require_secrets=False)
        return self.select(plan, self._adapter_factory(self.config))

    def run(self, plan: ProvisionPlan) -> ProvisionReport:
        """执行编排流程

        异常:
            PermissionDeniedError: 非 root 运行
            ConfigError / CyclicDependencyError: 配置或步骤图无效
        """
        self._privilege_check()
        self.config.validate()

        adapter = self._adapter_factory(self.config)
        ordered = self.select(plan, adapter)
        report = ProvisionReport(plan=plan, steps=[s.name for s in ordered])

        logger.info(
            "开始安装: 站点=%s 用户=%s 步骤=%d 策略=%s",
            self.config.site_name, self.config.system_user, len(ordered), plan.policy.value,
        )
        pipeline = Pipeline(ordered, cancel_event=self.cancel_event)
        for hook in self._hooks:
            pipeline.subscribe(hook)
        report.run = pipeline.execute(plan.policy)

        if report.success:
            report.summary = AccessSummary.build(
                host_ip=adapter.host_ip(),
                system_user=self.config.system_user,
                admin_password=self.config.effective_admin_password,
            )
            logger.info("安装完成: %s", report.summary.site_url)
        else:
            failure = report.run.terminal_failure
            logger.error(
                "安装未完成: 失败步骤=%s 未执行=%d",
                failure.step if failure else "-", len(report.run.not_run),
            )
        return report
