"""执行计划查看命令：plan, presets"""

from __future__ import annotations

import sys
from typing import Any

import click

from provisioner.cli.options import config_options, load_config
from provisioner.core.exceptions import ConfigError, CyclicDependencyError
from provisioner.services.orchestrator import PRESETS, ExitCode, ProvisionOrchestrator, ProvisionPlan


def register_commands(main: click.Group) -> None:
    """注册计划查看命令"""
    main.add_command(plan)
    main.add_command(presets)


@click.command(name="plan")
@config_options
def plan(config_path: str, preset: str, targets: tuple[str, ...], **kwargs: Any) -> None:
    """打印解析后的执行顺序（不需要 root，不调用外部工具）"""
    try:
        config = load_config(config_path, kwargs)
        steps = ProvisionOrchestrator(config).preview(
            ProvisionPlan(preset=preset, targets=targets),
        )
    except CyclicDependencyError as e:
        click.echo(f"错误 [CyclicDependency]: {e}", err=True)
        sys.exit(int(ExitCode.CONFIG_ERROR))
    except ConfigError as e:
        click.echo(f"错误 [ConfigError]: {e}", err=True)
        sys.exit(int(ExitCode.CONFIG_ERROR))

    label = ", ".join(targets) if targets else preset
    click.echo(f"执行计划 [{label}]: 站点={config.site_name} 用户={config.system_user}")
    for idx, step in enumerate(steps, 1):
        deps = f"  <- {', '.join(sorted(step.depends_on))}" if step.depends_on else ""
        click.echo(f"  {idx:2d}. {step.name:28s}{deps}")


@click.command(name="presets")
def presets() -> None:
    """列出步骤预设"""
    for name in sorted(PRESETS):
        p = PRESETS[name]
        targets = ", ".join(p.targets) if p.targets else "全部步骤"
        click.echo(f"  {name:14s} {p.description}  [{targets}]")
