"""安装命令"""

from __future__ import annotations

import signal
import sys
import threading
from typing import Any, NoReturn

import click

from provisioner.cli import log_settings
from provisioner.cli.options import config_options, load_config
from provisioner.core.exceptions import ConfigError, CyclicDependencyError, PermissionDeniedError
from provisioner.core.models import ErrorKind, FailurePolicy, StepResult, StepStatus
from provisioner.core.pipeline import PipelineHook
from provisioner.services.orchestrator import (
    ExitCode,
    ProvisionOrchestrator,
    ProvisionPlan,
    ProvisionReport,
)
from provisioner.utils.logger import setup_logging
from provisioner.utils.yaml_io import save_json


def register_commands(main: click.Group) -> None:
    """注册安装命令"""
    main.add_command(install)


class ProgressPrinter(PipelineHook):
    """每完成一个步骤输出一行进度"""

    def on_result(self, result: StepResult) -> None:
        click.echo(f"  [{result.status.value:9s}] {result.step} ({result.duration:.1f}s)")


def _fail(kind: ErrorKind | str, message: str, code: ExitCode) -> NoReturn:
    label = kind.value if isinstance(kind, ErrorKind) else kind
    click.echo(f"错误 [{label}]: {message}", err=True)
    sys.exit(int(code))


def _print_report(report: ProvisionReport) -> None:
    run = report.run
    click.echo("\n=== 安装报告 ===")
    for name in run.not_run:
        click.echo(f"  [{StepStatus.NOT_RUN.value:9s}] {name}")

    if report.success and report.summary:
        s = report.summary
        click.echo("\n安装完成")
        click.echo(f"  访问地址: {s.site_url}")
        click.echo(f"  系统用户: {s.system_user}")
        click.echo(f"  管理员:   {s.admin_login} / {s.admin_password}")
        return

    failure = run.terminal_failure
    if failure is not None and failure.error is not None:
        click.echo(f"\n失败步骤: {failure.step}", err=True)
        click.echo(f"错误类型: {failure.error.kind.value}", err=True)
        click.echo(f"错误信息: {failure.error.message}", err=True)
        if failure.error.diagnostic and failure.error.diagnostic != failure.error.message:
            click.echo("工具输出:", err=True)
            click.echo(failure.error.diagnostic, err=True)
    if run.cancelled:
        click.echo("\n已取消：剩余步骤未执行", err=True)


def _install_cancel_handlers(event: threading.Event) -> dict:
    """SIGINT / SIGTERM 只置位取消标志，当前步骤执行完后停止"""
    def handler(signum: int, _frame: Any) -> None:
        click.echo(f"\n收到信号 {signum}，当前步骤完成后停止", err=True)
        event.set()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, handler)
        except ValueError:
            # 非主线程（如部分测试环境）无法注册信号
            pass
    return previous


@click.command(name="install")
@config_options
@click.option("--policy", type=click.Choice([p.value for p in FailurePolicy]),
              default=FailurePolicy.STOP_ON_FIRST_FAILURE.value, show_default=True,
              help="stop: 首个失败即停止；continue: 继续执行不受影响的步骤")
@click.option("--report", "report_path", default="", help="把运行报告写入 JSON 文件")
def install(config_path: str, preset: str, targets: tuple[str, ...],
            policy: str, report_path: str, **kwargs: Any) -> None:
    """执行安装（需要 root）"""
    try:
        config = load_config(config_path, kwargs)
    except ConfigError as e:
        _fail("ConfigError", str(e), ExitCode.CONFIG_ERROR)
    setup_logging(**log_settings(), secrets=config.secrets)

    plan = ProvisionPlan(preset=preset, targets=targets, policy=FailurePolicy(policy))
    cancel_event = threading.Event()
    orchestrator = ProvisionOrchestrator(config, cancel_event=cancel_event)
    orchestrator.subscribe(ProgressPrinter())

    previous = _install_cancel_handlers(cancel_event)
    try:
        report = orchestrator.run(plan)
    except PermissionDeniedError as e:
        _fail(ErrorKind.PERMISSION_DENIED, str(e), ExitCode.PRECONDITION_FAILED)
    except CyclicDependencyError as e:
        _fail(ErrorKind.CYCLIC_DEPENDENCY, str(e), ExitCode.CONFIG_ERROR)
    except ConfigError as e:
        _fail("ConfigError", str(e), ExitCode.CONFIG_ERROR)
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)

    _print_report(report)
    if report_path:
        save_json(report_path, report.to_dict())
    sys.exit(int(report.exit_code))
