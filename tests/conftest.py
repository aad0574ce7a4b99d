"""测试共享 fixture - 假适配器 + 记录型命令执行器

整体思路:

  FakeAdapter         用内存状态模拟"现场"：查询方法读状态，动作方法改状态，
                      每次调用都记录到 calls，可按方法名注入失败或"谎报成功"
  RecordingExecutor   替换全局 CommandExecutor，记录命令并按规则返回结果，
                      用于测试 ShellToolAdapter 和 CLI 不会真的起子进程
"""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from provisioner.core.config import ProvisionConfig
from provisioner.core.exceptions import ExecutionError
from provisioner.core.models import ExecutionContext
from provisioner.utils import shell
from provisioner.utils.logger import reset_logging
from provisioner.utils.shell import CommandResult

# =========================================================================
# 假适配器
# =========================================================================


class FakeAdapter:
    """内存版 ExternalToolAdapter"""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple]] = []
        self.failures: dict[str, Exception] = {}
        self.lying: set[str] = set()  # 这些动作返回成功但不改变状态

        self.system_updated = False
        self.users: dict[str, set[str]] = {}
        self.packages_ok = False
        self.tools: set[str] = set()
        self.charset_ok = False
        self.db_password = ""
        self.runtimes: set[str] = set()
        self.cli_ok = False
        self.workspace_ok = False
        self.home_ok = False
        self.sites: set[str] = set()
        self.fetched: set[str] = set()
        self.installed: dict[str, list[str]] = {}
        self.current_site = ""
        self.scheduler_on: set[str] = set()
        self.maintenance: set[str] = set()
        self.proxy_ok = False
        self.healthy = False

    def _call(self, name: str, *args: object) -> bool:
        """记录调用；返回 False 表示该动作应"谎报成功"而不改状态"""
        self.calls.append((name, args))
        if name in self.failures:
            raise self.failures[name]
        return name not in self.lying

    def count(self, name: str) -> int:
        return sum(1 for n, _ in self.calls if n == name)

    # ---- 系统包 ----

    def system_up_to_date(self) -> bool:
        self._call("system_up_to_date")
        return self.system_updated

    def system_update(self) -> None:
        if self._call("system_update"):
            self.system_updated = True

    def packages_installed(self, names: list[str]) -> bool:
        self._call("packages_installed", tuple(names))
        return self.packages_ok

    def package_install(self, names: list[str]) -> None:
        if self._call("package_install", tuple(names)):
            self.packages_ok = True

    def global_tool_available(self, name: str) -> bool:
        self._call("global_tool_available", name)
        return name in self.tools

    def global_tool_install(self, name: str) -> None:
        if self._call("global_tool_install", name):
            self.tools.add(name)

    # ---- 用户 ----

    def user_exists(self, name: str) -> bool:
        self._call("user_exists", name)
        return name in self.users

    def user_in_group(self, name: str, group: str) -> bool:
        self._call("user_in_group", name, group)
        return group in self.users.get(name, set())

    def user_create(self, name: str, *, password: str = "", groups: list[str] | None = None) -> None:
        if self._call("user_create", name, password, tuple(groups or ())):
            self.users.setdefault(name, set()).update(groups or ())

    def home_access_granted(self, user: str) -> bool:
        self._call("home_access_granted", user)
        return self.home_ok

    def home_access_grant(self, user: str) -> None:
        if self._call("home_access_grant", user):
            self.home_ok = True

    # ---- 数据库 ----

    def db_charset_configured(self) -> bool:
        self._call("db_charset_configured")
        return self.charset_ok

    def db_configure_charset(self) -> None:
        if self._call("db_configure_charset"):
            self.charset_ok = True

    def db_root_password_works(self, user: str, password: str) -> bool:
        self._call("db_root_password_works", user)
        return bool(password) and self.db_password == password

    def db_set_root_password(self, user: str, password: str) -> None:
        if self._call("db_set_root_password", user):
            self.db_password = password

    # ---- 运行时与 bench ----

    def runtime_installed(self, version: str) -> bool:
        self._call("runtime_installed", version)
        return version in self.runtimes

    def runtime_install(self, version: str) -> None:
        if self._call("runtime_install", version):
            self.runtimes.add(version)

    def app_cli_installed(self) -> bool:
        self._call("app_cli_installed")
        return self.cli_ok

    def app_cli_install(self) -> None:
        if self._call("app_cli_install"):
            self.cli_ok = True

    def workspace_exists(self) -> bool:
        self._call("workspace_exists")
        return self.workspace_ok

    def workspace_init(self, branch: str) -> None:
        if self._call("workspace_init", branch):
            self.workspace_ok = True

    # ---- 站点与应用 ----

    def site_exists(self, name: str) -> bool:
        self._call("site_exists", name)
        return name in self.sites

    def site_create(
        self, name: str, *, db_root_user: str, db_root_password: str, admin_password: str,
    ) -> None:
        if self._call("site_create", name, admin_password):
            self.sites.add(name)
            self.installed[name] = []
            self.scheduler_on.discard(name)

    def site_drop(self, name: str, *, force: bool = False) -> None:
        if self._call("site_drop", name, force):
            self.sites.discard(name)
            self.installed.pop(name, None)

    def app_fetched(self, app: str) -> bool:
        self._call("app_fetched", app)
        return app in self.fetched

    def app_fetch(self, app: str, *, branch: str = "", url: str = "") -> None:
        if self._call("app_fetch", app, branch, url):
            self.fetched.add(app)

    def app_installed_on_site(self, app: str, site: str) -> bool:
        self._call("app_installed_on_site", app, site)
        return app in self.installed.get(site, [])

    def app_install_on_site(self, app: str, site: str) -> None:
        if self._call("app_install_on_site", app, site):
            self.installed.setdefault(site, []).append(app)

    def default_site(self) -> str:
        self._call("default_site")
        return self.current_site

    def default_site_set(self, site: str) -> None:
        if self._call("default_site_set", site):
            self.current_site = site

    def scheduler_enabled(self, site: str) -> bool:
        self._call("scheduler_enabled", site)
        return site in self.scheduler_on

    def scheduler_enable(self, site: str) -> None:
        if self._call("scheduler_enable", site):
            self.scheduler_on.add(site)

    def maintenance_mode(self, site: str) -> bool:
        self._call("maintenance_mode", site)
        return site in self.maintenance

    def maintenance_mode_disable(self, site: str) -> None:
        if self._call("maintenance_mode_disable", site):
            self.maintenance.discard(site)

    # ---- 代理 / 进程 ----

    def reverse_proxy_configured(self) -> bool:
        self._call("reverse_proxy_configured")
        return self.proxy_ok

    def reverse_proxy_configure(self, user: str) -> None:
        if self._call("reverse_proxy_configure", user):
            self.proxy_ok = True

    def services_healthy(self) -> bool:
        self._call("services_healthy")
        return self.healthy

    def process_supervisor_reload(self) -> None:
        if self._call("process_supervisor_reload"):
            self.healthy = True

    def host_ip(self) -> str:
        self._call("host_ip")
        return "10.0.0.5"


# =========================================================================
# 记录型命令执行器
# =========================================================================


@dataclass
class RecordedCommand:
    cmd: str | list[str]
    context: ExecutionContext
    input: str | None

    @property
    def text(self) -> str:
        return self.cmd if isinstance(self.cmd, str) else " ".join(self.cmd)


@dataclass
class RecordingExecutor:
    """按子串规则返回结果；未命中的命令返回成功、空输出"""

    rules: list[tuple[str, CommandResult]] = field(default_factory=list)
    commands: list[RecordedCommand] = field(default_factory=list)

    def on(self, fragment: str, *, rc: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.rules.append((fragment, CommandResult(rc, stdout, stderr)))

    def execute(self, cmd, *, context, input=None, timeout=None) -> CommandResult:
        recorded = RecordedCommand(cmd, context, input)
        self.commands.append(recorded)
        for fragment, result in self.rules:
            if fragment in recorded.text:
                return result
        return CommandResult(0, "", "")

    def texts(self) -> list[str]:
        return [c.text for c in self.commands]


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture(autouse=True)
def _clean_logging():
    """CliRunner 会替换 stderr，测试结束后清掉绑定在旧流上的 handler"""
    yield
    reset_logging()


@pytest.fixture()
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture()
def recording_executor():
    """替换全局执行器，测试结束后恢复"""
    previous = shell.get_executor()
    executor = RecordingExecutor()
    shell.set_executor(executor)
    yield executor
    shell.set_executor(previous)


@pytest.fixture()
def config(tmp_path) -> ProvisionConfig:
    return ProvisionConfig(
        db_root_password="s3cret-db",
        admin_password="adm1n",
        home_root=str(tmp_path / "home"),
    )


@pytest.fixture()
def tool_error():
    """构造外部工具失败异常"""
    def make(message: str = "bench 失败 (rc=1)", diagnostic: str = "Site erpsite already exists") -> ExecutionError:
        return ExecutionError(message, returncode=1, diagnostic=diagnostic)
    return make
