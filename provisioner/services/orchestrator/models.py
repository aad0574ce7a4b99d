"""编排器数据模型

- ProvisionPlan: 本次调用要执行哪些步骤、以何种失败策略
- AccessSummary: 安装成功后输出的访问信息
- ProvisionReport: 编排报告（运行日志 + 访问信息 + 退出码）
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from provisioner.core.models import FailurePolicy, RunReport

ADMIN_LOGIN = "Administrator"


class ExitCode(IntEnum):
    OK = 0
    PRECONDITION_FAILED = 1  # 任何步骤执行前失败（如权限不足）
    STEP_FAILED = 2
    CONFIG_ERROR = 3


@dataclass(frozen=True)
class ProvisionPlan:
    """编排计划 - 选择预设或显式步骤，未选择时执行完整安装"""

    preset: str = "full"
    targets: tuple[str, ...] = ()  # 显式步骤名，优先于 preset
    policy: FailurePolicy = FailurePolicy.STOP_ON_FIRST_FAILURE


@dataclass(frozen=True)
class AccessSummary:
    """站点访问信息；值来自配置，仅主机 IP 在运行时查询"""

    site_url: str
    system_user: str
    admin_login: str
    admin_password: str

    @classmethod
    def build(cls, *, host_ip: str, system_user: str, admin_password: str) -> AccessSummary:
        return cls(
            site_url=f"http://{host_ip or '<server-ip>'}/",
            system_user=system_user,
            admin_login=ADMIN_LOGIN,
            admin_password=admin_password,
        )


@dataclass
class ProvisionReport:
    """编排执行报告"""

    plan: ProvisionPlan
    steps: list[str] = field(default_factory=list)  # 解析后的执行顺序
    run: RunReport = field(default_factory=RunReport)
    summary: AccessSummary | None = None

    @property
    def success(self) -> bool:
        return self.run.success

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.OK if self.success else ExitCode.STEP_FAILED

    def to_dict(self) -> dict:
        data = {
            "preset": self.plan.preset,
            "targets": list(self.plan.targets),
            "policy": self.plan.policy.value,
            "steps": list(self.steps),
            "exit_code": int(self.exit_code),
            **self.run.to_dict(),
        }
        if self.summary:
            data["summary"] = {
                "site_url": self.summary.site_url,
                "system_user": self.summary.system_user,
                "admin_login": self.summary.admin_login,
            }
        return data
