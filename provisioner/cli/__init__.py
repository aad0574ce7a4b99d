"""fprov 命令行接口

CLI 按职责拆分为子模块，每个模块注册自己的命令到 main group。
"""

import os

import click

from provisioner import __version__
from provisioner.utils.logger import setup_logging


def log_settings() -> dict:
    return {
        "level": os.getenv("FPROV_LOG_LEVEL", "INFO"),
        "json_output": os.getenv("FPROV_LOG_JSON", "") == "1",
    }


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """fprov - ERPNext / HRMS 生产环境安装编排器"""
    setup_logging(**log_settings())


# 注册子命令
from provisioner.cli.install import register_commands as _reg_install  # noqa: E402
from provisioner.cli.plan import register_commands as _reg_plan  # noqa: E402

_reg_install(main)
_reg_plan(main)
