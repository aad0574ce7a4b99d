"""install / plan 共用的配置选项"""

from __future__ import annotations

from typing import Any, Callable

import click

from provisioner.core.config import ProvisionConfig
from provisioner.services.orchestrator.steps import PRESETS

DEFAULT_CONFIG = "configs/provision.yml"

_CONFIG_OPTIONS = [
    click.option("-c", "--config", "config_path", default=DEFAULT_CONFIG, show_default=True,
                 help="YAML 配置文件（不存在时使用默认值）"),
    click.option("--preset", default="full", show_default=True,
                 type=click.Choice(sorted(PRESETS)), help="步骤预设"),
    click.option("--step", "targets", multiple=True,
                 help="只执行指定步骤及其依赖（可多次，优先于 --preset）"),
    click.option("--site", "site_name", default=None, help="站点名"),
    click.option("--user", "system_user", default=None, help="系统用户"),
    click.option("--user-password", "system_user_password", default=None,
                 envvar="FPROV_SYSTEM_USER_PASSWORD", help="系统用户密码"),
    click.option("--db-root-user", default=None, help="数据库 root 用户"),
    click.option("--db-root-password", default=None,
                 envvar="FPROV_DB_ROOT_PASSWORD", help="数据库 root 密码"),
    click.option("--admin-password", default=None,
                 envvar="FPROV_ADMIN_PASSWORD", help="站点管理员密码（默认同站点名）"),
    click.option("--folder", "working_folder", default=None, help="bench 目录名"),
    click.option("--runtime-version", default=None, help="Node 版本"),
    click.option("--force/--no-force", default=None,
                 help="站点已存在时删除重建"),
]

_OVERRIDE_KEYS = (
    "site_name", "system_user", "system_user_password", "db_root_user",
    "db_root_password", "admin_password", "working_folder", "runtime_version", "force",
)


def config_options(func: Callable[..., Any]) -> Callable[..., Any]:
    for option in reversed(_CONFIG_OPTIONS):
        func = option(func)
    return func


def load_config(config_path: str, kwargs: dict[str, Any]) -> ProvisionConfig:
    """配置文件 + CLI 覆盖；kwargs 中的覆盖项会被取出"""
    overrides = {k: kwargs.pop(k, None) for k in _OVERRIDE_KEYS}
    return ProvisionConfig.from_file(config_path).with_overrides(**overrides)
