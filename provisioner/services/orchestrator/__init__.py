"""安装编排器模块

- models.py: 计划 / 报告 / 访问信息 / 退出码
- steps.py: 步骤工厂、完整目录与预设
- orchestrator.py: 协调器
"""

from provisioner.services.orchestrator.models import (
    AccessSummary,
    ExitCode,
    ProvisionPlan,
    ProvisionReport,
)
from provisioner.services.orchestrator.orchestrator import ProvisionOrchestrator
from provisioner.services.orchestrator.steps import PRESETS, build_catalog

__all__ = [
    "AccessSummary",
    "ExitCode",
    "PRESETS",
    "ProvisionOrchestrator",
    "ProvisionPlan",
    "ProvisionReport",
    "build_catalog",
]
