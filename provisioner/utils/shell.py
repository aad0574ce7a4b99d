"""Shell 命令执行工具 - 统一子进程调用

通过 CommandExecutor 协议抽象子进程执行，方便测试替换。
执行身份由 ExecutionContext 显式传入：指定 user 时经 `sudo -H -u <user> bash -lc`
进入该用户的登录环境，而不是在脚本里嵌套新的 shell。
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Protocol

from provisioner.core.exceptions import ExecutionError
from provisioner.core.models import ExecutionContext

logger = logging.getLogger(__name__)

# 失败时保留的诊断输出长度
MAX_DIAGNOSTIC = 4000


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def diagnostic(self) -> str:
        text = self.stderr.strip() or self.stdout.strip()
        return text[-MAX_DIAGNOSTIC:]


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议

    字符串命令按 shell 语法解释（允许管道与重定向），列表命令直接执行。
    测试时注入记录型实现，无需 patch subprocess。
    """

    def execute(
        self,
        cmd: str | list[str],
        *,
        context: ExecutionContext,
        input: str | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        """执行命令并返回结果"""
        ...


# =========================================================================
# 默认实现: 本地执行器
# =========================================================================

def build_argv(cmd: str | list[str], context: ExecutionContext) -> list[str]:
    """把命令和执行上下文拼成最终 argv"""
    if not context.user:
        return ["bash", "-c", cmd] if isinstance(cmd, str) else list(cmd)

    lines = [f"export {k}={shlex.quote(v)}" for k, v in context.env]
    if context.cwd:
        lines.append(f"cd {shlex.quote(context.cwd)} || exit 1")
    lines.append(cmd if isinstance(cmd, str) else shlex.join(cmd))
    return ["sudo", "-H", "-u", context.user, "bash", "-lc", "\n".join(lines)]


class LocalExecutor:
    """本地子进程执行器（默认实现）"""

    def execute(
        self,
        cmd: str | list[str],
        *,
        context: ExecutionContext,
        input: str | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        argv = build_argv(cmd, context)
        env = None
        if not context.user and context.env:
            env = {**os.environ, **dict(context.env)}
        r = subprocess.run(
            argv, capture_output=True, text=True, input=input,
            cwd=(context.cwd or None) if not context.user else None,
            env=env, check=False, timeout=timeout,
        )
        return CommandResult(
            returncode=r.returncode,
            stdout=r.stdout,
            stderr=r.stderr,
        )


# =========================================================================
# 全局默认执行器（可替换）
# =========================================================================

_default_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    """获取全局默认命令执行器"""
    return _default_executor


def set_executor(executor: CommandExecutor) -> None:
    """替换全局默认命令执行器（用于测试或远程执行场景）"""
    global _default_executor  # noqa: PLW0603
    _default_executor = executor


# =========================================================================
# 便捷函数
# =========================================================================

def run_cmd(
    cmd: str | list[str],
    *,
    context: ExecutionContext | None = None,
    label: str = "cmd",
    input: str | None = None,
    timeout: int | None = None,
    check: bool = True,
    executor: CommandExecutor | None = None,
) -> CommandResult:
    """执行命令；check=True 时非零退出抛 ExecutionError

    Args:
        cmd: 命令字符串（shell 语法）或参数列表
        context: 执行身份，默认当前用户
        label: 日志标签
        input: 写入 stdin 的内容（密码等敏感内容不会出现在命令行里）
        check: 为 False 时只返回结果，用于状态查询
    """
    ctx = context or ExecutionContext()
    shown = cmd if isinstance(cmd, str) else shlex.join(cmd)
    logger.info(
        "  %s: %s%s", label, shown, f" (user={ctx.user})" if ctx.user else "",
    )
    try:
        r = (executor or get_executor()).execute(
            cmd, context=ctx, input=input, timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise ExecutionError(
            f"{label}超时（{timeout}秒）", diagnostic=str(e),
        ) from e
    if check and not r.success:
        raise ExecutionError(
            f"{label}失败 (rc={r.returncode})",
            returncode=r.returncode, diagnostic=r.diagnostic,
        )
    return r
