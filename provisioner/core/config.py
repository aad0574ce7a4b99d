"""安装配置

替代安装脚本顶部的全局 shell 变量：一个不可变的 ProvisionConfig，
由 YAML 文件加载 + CLI 参数覆盖，显式传入步骤目录构建函数。
"""

from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from provisioner.core.exceptions import ConfigError
from provisioner.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

# 用户名 / 站点名 / 目录名只允许安全字符，它们会出现在命令行和路径中
_SAFE_NAME_RE = re.compile(r"^[a-z_][a-z0-9_.\-]*$")
_SAFE_SITE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.\-]*$")

DEFAULT_PACKAGES: tuple[str, ...] = (
    "git", "software-properties-common",
    "python3-dev", "python3-setuptools", "python3-pip", "python3-venv",
    "mariadb-server", "redis-server",
    "nginx", "supervisor",
    "npm", "curl",
    "xvfb", "libfontconfig", "wkhtmltopdf",
)

DEFAULT_NVM_INSTALL_URL = "https://raw.githubusercontent.com/creationix/nvm/master/install.sh"


@dataclass(frozen=True)
class AppSource:
    """要拉取并安装到站点上的应用

    url 为空时由 bench 按应用名从默认源解析；branch 为空时跟随 frappe_branch。
    """

    name: str
    url: str = ""
    branch: str = ""


DEFAULT_APPS: tuple[AppSource, ...] = (
    AppSource("erpnext", url="https://github.com/frappe/erpnext"),
    AppSource("hrms"),
)


@dataclass(frozen=True)
class ProvisionConfig:
    """一次安装的全部参数（不可变）"""

    site_name: str = "erpsite"
    system_user: str = "frappe"
    system_user_password: str = ""
    db_root_user: str = "root"
    db_root_password: str = ""
    admin_password: str = ""
    working_folder: str = "frappe-bench"
    runtime_version: str = "18"
    force: bool = False

    frappe_branch: str = "version-15"
    apps: tuple[AppSource, ...] = DEFAULT_APPS
    packages: tuple[str, ...] = DEFAULT_PACKAGES
    global_tools: tuple[str, ...] = ("yarn",)
    nvm_install_url: str = DEFAULT_NVM_INSTALL_URL

    # 仅用于测试 / 非标准布局，默认 /home/<system_user>
    home_root: str = field(default="/home", repr=False)

    # ---------------------------------------------------------------
    # 派生值
    # ---------------------------------------------------------------

    @property
    def home_dir(self) -> str:
        return f"{self.home_root.rstrip('/')}/{self.system_user}"

    @property
    def bench_dir(self) -> str:
        return f"{self.home_dir}/{self.working_folder}"

    @property
    def effective_admin_password(self) -> str:
        """未配置管理员密码时沿用站点名"""
        return self.admin_password or self.site_name

    @property
    def secrets(self) -> tuple[str, ...]:
        return tuple(
            s for s in (
                self.system_user_password, self.db_root_password, self.admin_password,
            ) if s
        )

    def branch_for(self, app: AppSource) -> str:
        return app.branch or self.frappe_branch

    # ---------------------------------------------------------------
    # 构造
    # ---------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvisionConfig:
        """从字典构建，未知字段记录警告后忽略"""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(k for k in data if k not in known)
        if unknown:
            logger.warning("忽略未知配置项: %s", unknown)
        matched = {k: v for k, v in data.items() if k in known}

        if "apps" in matched:
            matched["apps"] = _parse_apps(matched["apps"])
        for key in ("packages", "global_tools"):
            if key in matched:
                matched[key] = _parse_str_list(key, matched[key])
        for key, value in matched.items():
            if key in ("apps", "packages", "global_tools"):
                continue
            if key == "force":
                if not isinstance(value, bool):
                    raise ConfigError(f"配置项 force 必须是布尔值: {value!r}")
            elif isinstance(value, int) and not isinstance(value, bool):
                # YAML 会把 runtime_version: 18 读成整数
                matched[key] = str(value)
            elif isinstance(value, float):
                # 18.20 会被读成 18.2，无法还原原文
                raise ConfigError(f"配置项 {key} 是小数 {value!r}，请加引号写成字符串")
            elif not isinstance(value, str):
                raise ConfigError(f"配置项 {key} 必须是字符串: {value!r}")
        return cls(**matched)

    @classmethod
    def from_file(cls, path: str) -> ProvisionConfig:
        """从 YAML 文件加载配置，文件不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            logger.info("配置文件 %s 不存在或为空，使用默认配置", path)
            return cls()
        logger.info("配置已加载: %s", path)
        return cls.from_dict(data)

    def with_overrides(self, **overrides: Any) -> ProvisionConfig:
        """应用 CLI 覆盖；值为 None 的项保持原值"""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **changes) if changes else self

    def validate(self, *, require_secrets: bool = True) -> None:
        """校验配置，失败抛 ConfigError

        require_secrets=False 用于只查看执行计划的场景。
        """
        errors: list[str] = []
        if not _SAFE_NAME_RE.match(self.system_user):
            errors.append(f"system_user 非法: {self.system_user!r}")
        if not _SAFE_NAME_RE.match(self.db_root_user):
            errors.append(f"db_root_user 非法: {self.db_root_user!r}")
        if not _SAFE_NAME_RE.match(self.working_folder):
            errors.append(f"working_folder 非法: {self.working_folder!r}")
        if not _SAFE_SITE_RE.match(self.site_name):
            errors.append(f"site_name 非法: {self.site_name!r}")
        if not re.match(r"^[0-9][0-9.]*$|^lts/[a-z*]+$", self.runtime_version):
            errors.append(f"runtime_version 非法: {self.runtime_version!r}")
        if require_secrets and not self.db_root_password:
            errors.append("db_root_password 未设置（可用 FPROV_DB_ROOT_PASSWORD 环境变量）")
        if not self.apps:
            errors.append("apps 不能为空")
        for app in self.apps:
            if not _SAFE_NAME_RE.match(app.name):
                errors.append(f"应用名非法: {app.name!r}")
        if errors:
            raise ConfigError("配置无效: " + "; ".join(errors))


def _parse_apps(raw: Any) -> tuple[AppSource, ...]:
    """apps 支持字符串列表或 {name, url, branch} 映射列表"""
    if not isinstance(raw, list):
        raise ConfigError(f"apps 必须是列表: {raw!r}")
    apps: list[AppSource] = []
    for item in raw:
        if isinstance(item, str):
            apps.append(AppSource(item))
        elif isinstance(item, dict) and isinstance(item.get("name"), str):
            apps.append(AppSource(
                name=item["name"],
                url=_optional_str(item, "url"),
                branch=_optional_str(item, "branch"),
            ))
        else:
            raise ConfigError(f"apps 条目无效: {item!r}")
    return tuple(apps)


def _optional_str(item: dict[str, Any], key: str) -> str:
    """url / branch 可省略或留空（null）；其他非字符串值视为错误"""
    value = item.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"应用 {item['name']} 的 {key} 必须是字符串: {value!r}")
    return value


def _parse_str_list(key: str, raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list) or not all(isinstance(x, str) for x in raw):
        raise ConfigError(f"{key} 必须是字符串列表: {raw!r}")
    return tuple(raw)
