"""统一异常体系

所有业务异常继承 ProvisionError，替代散落的 ValueError / RuntimeError。
CLI 层据此映射退出码，StepRunner 据此归类 ErrorKind。
"""

from __future__ import annotations


class ProvisionError(Exception):
    """编排器基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(ProvisionError):
    """配置文件缺失、内容无效，或步骤图定义错误"""

    code = "CONFIG_ERROR"


class CyclicDependencyError(ConfigError):
    """步骤依赖图存在环，无法确定执行顺序"""

    code = "CYCLIC_DEPENDENCY"

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"步骤依赖存在环: {' -> '.join(cycle)}")
        self.cycle = cycle


class PermissionDeniedError(ProvisionError):
    """调用者权限不足（非 root）"""

    code = "PERMISSION_DENIED"


class ExecutionError(ProvisionError):
    """外部工具执行失败，携带返回码和原始诊断输出"""

    code = "EXECUTION_ERROR"

    def __init__(
        self, message: str, *, returncode: int | None = None, diagnostic: str = "",
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.diagnostic = diagnostic
