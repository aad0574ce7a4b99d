"""基于本地 shell 的外部工具适配器

ExternalToolAdapter 的默认实现：apt / adduser / mysql / nvm / pip / bench /
nginx / supervisorctl。所有命令经 CommandExecutor 执行，执行身份用
ExecutionContext 表达：

  _root   以 root 执行，DEBIAN_FRONTEND=noninteractive
  _user   以 system_user 登录环境执行（已加载 nvm），工作目录 = home
  _bench  同 _user，工作目录 = bench 目录

能直接读文件判断的状态（站点目录、site_config.json、配置软链）不起子进程。
"""

from __future__ import annotations

import json
import logging
import re
import shlex
import time
from pathlib import Path
from typing import Callable

from provisioner.core.config import ProvisionConfig
from provisioner.core.exceptions import ExecutionError
from provisioner.core.models import ExecutionContext
from provisioner.utils.shell import CommandExecutor, CommandResult, run_cmd
from provisioner.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

CHARSET_CNF = """\
[mysqld]
character-set-client-handshake = FALSE
character-set-server = utf8mb4
collation-server = utf8mb4_unicode_ci

[mysql]
default-character-set = utf8mb4
"""

# 加载 nvm，使 node / yarn 对 bench 可见
_NVM_SOURCE = '[ -s "$NVM_DIR/nvm.sh" ] && . "$NVM_DIR/nvm.sh"'

_NEWLY_INSTALLED_RE = re.compile(r"\b(\d+) newly installed")
_UPGRADED_RE = re.compile(r"\b(\d+) upgraded, ")


def _sql_quote(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


class ShellToolAdapter:
    """通过本地命令驱动外部工具"""

    def __init__(
        self,
        config: ProvisionConfig,
        *,
        executor: CommandExecutor | None = None,
        etc_root: str = "/etc",
        retries: int = 3,
        retry_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.executor = executor
        self.etc_root = Path(etc_root)
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self._sleep = sleep

        nvm_env = (("NVM_DIR", f"{config.home_dir}/.nvm"),)
        self._root = ExecutionContext(env=(("DEBIAN_FRONTEND", "noninteractive"),))
        self._user = ExecutionContext(user=config.system_user, cwd=config.home_dir, env=nvm_env)
        self._bench = ExecutionContext(user=config.system_user, cwd=config.bench_dir, env=nvm_env)

    # ------------------------------------------------------------------
    # 内部工具
    # ------------------------------------------------------------------

    def _run(
        self, cmd: str | list[str], ctx: ExecutionContext, label: str, **kwargs,
    ) -> CommandResult:
        return run_cmd(cmd, context=ctx, label=label, executor=self.executor, **kwargs)

    def _query(self, cmd: str | list[str], ctx: ExecutionContext, label: str, **kwargs) -> CommandResult:
        """状态查询：不因非零退出抛异常"""
        return self._run(cmd, ctx, label, check=False, **kwargs)

    def _as_user(self, cmd: str) -> str:
        return f"{_NVM_SOURCE}\n{cmd}"

    def _bench_cmd(self, *args: str) -> str:
        return self._as_user(shlex.join(["bench", *args]))

    def _with_retry(self, cmd: str | list[str], label: str) -> CommandResult:
        """仅用于幂等命令（软件源刷新），指数退避重试"""
        for attempt in range(1, self.retries):
            try:
                return self._run(cmd, self._root, label)
            except ExecutionError as e:
                delay = self.retry_delay * 2 ** (attempt - 1)
                logger.warning("%s 第 %d 次失败，%.0f 秒后重试: %s", label, attempt, delay, e)
                self._sleep(delay)
        return self._run(cmd, self._root, label)

    @property
    def _sites_dir(self) -> Path:
        return Path(self.config.bench_dir) / "sites"

    def _site_config(self, site: str) -> dict:
        path = self._sites_dir / site / "site_config.json"
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ExecutionError(f"站点配置无法解析: {path}", diagnostic=str(e)) from e
        if not isinstance(data, dict):
            raise ExecutionError(f"站点配置不是 JSON 对象: {path}")
        return data

    @property
    def _charset_cnf(self) -> Path:
        return self.etc_root / "mysql" / "mariadb.conf.d" / "99-frappe.cnf"

    # ------------------------------------------------------------------
    # 系统包
    # ------------------------------------------------------------------

    def system_up_to_date(self) -> bool:
        r = self._run("apt-get -s upgrade", self._root, "检查可升级包")
        m = _UPGRADED_RE.search(r.stdout)
        return m is not None and m.group(1) == "0"

    def system_update(self) -> None:
        self._with_retry(["apt-get", "update", "-y"], "刷新软件源")
        self._run(["apt-get", "upgrade", "-y"], self._root, "升级系统")
        self._run(["apt-get", "autoremove", "-y"], self._root, "清理无用包")

    def packages_installed(self, names: list[str]) -> bool:
        # 用模拟安装判断，apt 能正确处理虚包（如 libfontconfig）
        r = self._run(["apt-get", "-s", "install", *names], self._root, "检查系统包")
        m = _NEWLY_INSTALLED_RE.search(r.stdout)
        return m is not None and m.group(1) == "0"

    def package_install(self, names: list[str]) -> None:
        self._with_retry(["apt-get", "update", "-y"], "刷新软件源")
        self._run(["apt-get", "install", "-y", *names], self._root, "安装系统包")

    def global_tool_available(self, name: str) -> bool:
        return self._query(f"command -v {shlex.quote(name)}", self._root, f"查找 {name}").success

    def global_tool_install(self, name: str) -> None:
        self._run(["npm", "install", "-g", name], self._root, f"安装 {name}")

    # ------------------------------------------------------------------
    # 系统用户
    # ------------------------------------------------------------------

    def user_exists(self, name: str) -> bool:
        return self._query(["id", "-u", name], self._root, "查询用户").success

    def user_in_group(self, name: str, group: str) -> bool:
        r = self._run(["id", "-nG", name], self._root, "查询用户组")
        return group in r.stdout.split()

    def user_create(self, name: str, *, password: str = "", groups: list[str] | None = None) -> None:
        if not self.user_exists(name):
            self._run(
                ["adduser", "--disabled-password", "--gecos", "", name],
                self._root, "创建用户",
            )
            if password:
                self._run(["chpasswd"], self._root, "设置用户密码", input=f"{name}:{password}\n")
        for group in groups or []:
            self._run(["usermod", "-aG", group, name], self._root, f"加入 {group} 组")

    def home_access_granted(self, user: str) -> bool:
        home = Path(self.config.home_dir)
        return home.is_dir() and home.stat().st_mode & 0o005 == 0o005

    def home_access_grant(self, user: str) -> None:
        self._run(["chmod", "o+rx", self.config.home_dir], self._root, "开放 home 目录访问")

    # ------------------------------------------------------------------
    # 数据库
    # ------------------------------------------------------------------

    def db_charset_configured(self) -> bool:
        path = self._charset_cnf
        return path.exists() and path.read_text(encoding="utf-8") == CHARSET_CNF

    def db_configure_charset(self) -> None:
        logger.info("写入 MariaDB 字符集配置: %s", self._charset_cnf)
        atomic_write(self._charset_cnf, CHARSET_CNF)
        self._run(["systemctl", "restart", "mariadb"], self._root, "重启 MariaDB")

    def db_root_password_works(self, user: str, password: str) -> bool:
        # 走 TCP，绕开 unix_socket 认证，确认密码本身可用
        ctx = self._root.with_env(MYSQL_PWD=password)
        r = self._query(
            ["mysql", "--protocol=TCP", "-h", "127.0.0.1", "-u", user, "-e", "SELECT 1"],
            ctx, "检查数据库 root 密码",
        )
        return r.success

    def db_set_root_password(self, user: str, password: str) -> None:
        # 替代交互式 mysql_secure_installation；SQL 经 stdin 传入，不出现在命令行
        sql = "\n".join([
            f"ALTER USER {_sql_quote(user)}@'localhost' IDENTIFIED BY {_sql_quote(password)};",
            "DELETE FROM mysql.global_priv WHERE User='';",
            "DROP DATABASE IF EXISTS test;",
            "FLUSH PRIVILEGES;",
            "",
        ])
        ctx = self._root.with_env(MYSQL_PWD=password)
        self._run(["mysql", "-u", user], ctx, "设置数据库 root 密码", input=sql)

    # ------------------------------------------------------------------
    # 运行时与应用 CLI
    # ------------------------------------------------------------------

    def runtime_installed(self, version: str) -> bool:
        cmd = self._as_user(f"nvm which {shlex.quote(version)}")
        return self._query(cmd, self._user, "检查 Node 版本").success

    def runtime_install(self, version: str) -> None:
        if not Path(self.config.home_dir, ".nvm", "nvm.sh").exists():
            url = shlex.quote(self.config.nvm_install_url)
            self._run(f"curl -fsSL {url} | bash", self._user, "安装 nvm")
        v = shlex.quote(version)
        self._run(
            self._as_user(f"nvm install {v} && nvm alias default {v} && node -v && npm -v"),
            self._user, f"安装 Node {version}",
        )

    def app_cli_installed(self) -> bool:
        return self.global_tool_available("bench")

    def app_cli_install(self) -> None:
        self._run(
            ["pip3", "install", "--break-system-packages", "frappe-bench"],
            self._root, "安装 frappe-bench",
        )

    def workspace_exists(self) -> bool:
        bench = Path(self.config.bench_dir)
        return (bench / "apps" / "frappe").is_dir() and (bench / "sites").is_dir()

    def workspace_init(self, branch: str) -> None:
        self._run(
            self._as_user(shlex.join([
                "bench", "init", "--frappe-branch", branch, self.config.working_folder,
            ])),
            self._user, "初始化 bench",
        )

    # ------------------------------------------------------------------
    # 站点与应用
    # ------------------------------------------------------------------

    def site_exists(self, name: str) -> bool:
        return (self._sites_dir / name / "site_config.json").exists()

    def site_create(
        self, name: str, *, db_root_user: str, db_root_password: str, admin_password: str,
    ) -> None:
        self._run(
            self._bench_cmd(
                "new-site", name,
                "--db-root-username", db_root_user,
                "--db-root-password", db_root_password,
                "--admin-password", admin_password,
            ),
            self._bench, "创建站点",
        )

    def site_drop(self, name: str, *, force: bool = False) -> None:
        args = [
            "drop-site", name,
            "--db-root-username", self.config.db_root_user,
            "--db-root-password", self.config.db_root_password,
            "--no-backup",
        ]
        if force:
            args.append("--force")
        self._run(self._bench_cmd(*args), self._bench, "删除站点")

    def app_fetched(self, app: str) -> bool:
        return (Path(self.config.bench_dir) / "apps" / app).is_dir()

    def app_fetch(self, app: str, *, branch: str = "", url: str = "") -> None:
        args = ["get-app"]
        if branch:
            args += ["--branch", branch]
        args.append(url or app)
        self._run(self._bench_cmd(*args), self._bench, f"拉取应用 {app}")

    def app_installed_on_site(self, app: str, site: str) -> bool:
        r = self._run(self._bench_cmd("--site", site, "list-apps"), self._bench, "查询已安装应用")
        return any(
            line.split()[0] == app for line in r.stdout.splitlines() if line.strip()
        )

    def app_install_on_site(self, app: str, site: str) -> None:
        self._run(self._bench_cmd("--site", site, "install-app", app), self._bench, f"安装应用 {app}")

    def default_site(self) -> str:
        path = self._sites_dir / "currentsite.txt"
        return path.read_text(encoding="utf-8").strip() if path.exists() else ""

    def default_site_set(self, site: str) -> None:
        self._run(self._bench_cmd("use", site), self._bench, "设置默认站点")

    def scheduler_enabled(self, site: str) -> bool:
        r = self._run(self._bench_cmd("--site", site, "scheduler", "status"), self._bench, "查询调度器")
        return "is enabled" in r.stdout

    def scheduler_enable(self, site: str) -> None:
        self._run(self._bench_cmd("--site", site, "enable-scheduler"), self._bench, "启用调度器")

    def maintenance_mode(self, site: str) -> bool:
        return bool(self._site_config(site).get("maintenance_mode"))

    def maintenance_mode_disable(self, site: str) -> None:
        self._run(
            self._bench_cmd("--site", site, "set-maintenance-mode", "off"),
            self._bench, "关闭维护模式",
        )

    # ------------------------------------------------------------------
    # 反向代理 / 进程管理
    # ------------------------------------------------------------------

    def reverse_proxy_configured(self) -> bool:
        conf = f"{self.config.working_folder}.conf"
        return (
            (self.etc_root / "supervisor" / "conf.d" / conf).exists()
            and (self.etc_root / "nginx" / "conf.d" / conf).exists()
        )

    def reverse_proxy_configure(self, user: str) -> None:
        ctx = ExecutionContext(cwd=self.config.bench_dir, env=self._root.env)
        self._run(["bench", "setup", "production", user, "--yes"], ctx, "配置生产环境")

    def services_healthy(self) -> bool:
        if not self._query(["systemctl", "is-active", "--quiet", "nginx"], self._root, "检查 nginx").success:
            return False
        r = self._query(["supervisorctl", "status"], self._root, "检查 supervisor")
        lines = [line for line in r.stdout.splitlines() if line.strip()]
        return r.success and bool(lines) and all(line.split()[1:2] == ["RUNNING"] for line in lines)

    def process_supervisor_reload(self) -> None:
        self._run(["nginx", "-t"], self._root, "校验 nginx 配置")
        self._run(["systemctl", "reload", "nginx"], self._root, "重载 nginx")
        self._run(["supervisorctl", "restart", "all"], self._root, "重启 supervisor 进程")

    # ------------------------------------------------------------------
    # 其他
    # ------------------------------------------------------------------

    def host_ip(self) -> str:
        r = self._query(["hostname", "-I"], self._root, "查询主机 IP")
        parts = r.stdout.split()
        return parts[0] if r.success and parts else ""
