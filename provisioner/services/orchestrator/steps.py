"""步骤目录 - 声明式步骤工厂 + 命名预设

规范顺序：
 1. system_update             apt update / upgrade / autoremove
 2. create_user               系统用户 + sudo 组
 3. install_packages          基础系统包
 4. install_tool:<tool>       npm 全局工具（yarn）
 5. configure_db_charset      MariaDB utf8mb4
 6. set_db_root_password      数据库 root 密码
 7. install_runtime           nvm + Node
 8. install_app_cli           frappe-bench
 9. init_workspace            bench init
10. grant_home_access         home 目录 o+rx
11. create_site               bench new-site
12. fetch_app:<app>           bench get-app
13. install_app:<app>         bench install-app
14. set_default_site          bench use
15. enable_scheduler          启用调度器（所有应用安装之后）
16. disable_maintenance_mode  关闭维护模式
17. setup_production          bench setup production（仅一次）
18. reload_services           nginx -t / reload，supervisor restart

变体安装通过预设选择目标步骤，依赖自动补全，而不是复制一份新流程。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from provisioner.core.config import AppSource, ProvisionConfig
from provisioner.core.exceptions import ConfigError
from provisioner.core.protocols import ExternalToolAdapter
from provisioner.core.step import Step

logger = logging.getLogger(__name__)

SUDO_GROUP = "sudo"


# =========================================================================
# 步骤工厂
# =========================================================================


def system_update_step(adapter: ExternalToolAdapter, *, depends_on: Iterable[str] = ()) -> Step:
    return Step(
        name="system_update",
        description="更新系统软件包",
        precondition=adapter.system_up_to_date,
        action=adapter.system_update,
        depends_on=frozenset(depends_on),
    )


def create_user_step(
    adapter: ExternalToolAdapter, user: str, *,
    password: str = "", depends_on: Iterable[str] = (),
) -> Step:
    def ready() -> bool:
        return adapter.user_exists(user) and adapter.user_in_group(user, SUDO_GROUP)

    return Step(
        name="create_user",
        description=f"创建系统用户 {user}",
        precondition=ready,
        action=lambda: adapter.user_create(user, password=password, groups=[SUDO_GROUP]),
        depends_on=frozenset(depends_on),
    )


def install_packages_step(
    adapter: ExternalToolAdapter, packages: Iterable[str], *, depends_on: Iterable[str] = (),
) -> Step:
    names = list(packages)
    return Step(
        name="install_packages",
        description=f"安装 {len(names)} 个系统包",
        precondition=lambda: adapter.packages_installed(names),
        action=lambda: adapter.package_install(names),
        depends_on=frozenset(depends_on),
    )


def install_tool_step(
    adapter: ExternalToolAdapter, tool: str, *, depends_on: Iterable[str] = (),
) -> Step:
    return Step(
        name=f"install_tool:{tool}",
        description=f"全局安装 {tool}",
        precondition=lambda: adapter.global_tool_available(tool),
        action=lambda: adapter.global_tool_install(tool),
        depends_on=frozenset(depends_on),
    )


def configure_db_charset_step(adapter: ExternalToolAdapter, *, depends_on: Iterable[str] = ()) -> Step:
    return Step(
        name="configure_db_charset",
        description="配置 MariaDB utf8mb4 字符集",
        precondition=adapter.db_charset_configured,
        action=adapter.db_configure_charset,
        depends_on=frozenset(depends_on),
    )


def set_db_root_password_step(
    adapter: ExternalToolAdapter, user: str, password: str, *, depends_on: Iterable[str] = (),
) -> Step:
    return Step(
        name="set_db_root_password",
        description=f"设置数据库 {user} 密码",
        precondition=lambda: adapter.db_root_password_works(user, password),
        action=lambda: adapter.db_set_root_password(user, password),
        depends_on=frozenset(depends_on),
    )


def install_runtime_step(
    adapter: ExternalToolAdapter, version: str, *, depends_on: Iterable[str] = (),
) -> Step:
    return Step(
        name="install_runtime",
        description=f"安装 Node {version}",
        precondition=lambda: adapter.runtime_installed(version),
        action=lambda: adapter.runtime_install(version),
        depends_on=frozenset(depends_on),
    )


def install_app_cli_step(adapter: ExternalToolAdapter, *, depends_on: Iterable[str] = ()) -> Step:
    return Step(
        name="install_app_cli",
        description="安装 frappe-bench",
        precondition=adapter.app_cli_installed,
        action=adapter.app_cli_install,
        depends_on=frozenset(depends_on),
    )


def init_workspace_step(
    adapter: ExternalToolAdapter, branch: str, *, depends_on: Iterable[str] = (),
) -> Step:
    return Step(
        name="init_workspace",
        description=f"bench init ({branch})",
        precondition=adapter.workspace_exists,
        action=lambda: adapter.workspace_init(branch),
        depends_on=frozenset(depends_on),
    )


def grant_home_access_step(
    adapter: ExternalToolAdapter, user: str, *, depends_on: Iterable[str] = (),
) -> Step:
    return Step(
        name="grant_home_access",
        description=f"开放 {user} home 目录遍历权限",
        precondition=lambda: adapter.home_access_granted(user),
        action=lambda: adapter.home_access_grant(user),
        depends_on=frozenset(depends_on),
    )


def create_site_step(
    adapter: ExternalToolAdapter, site: str, *,
    db_root_user: str = "root", db_root_password: str = "", admin_password: str = "",
    force: bool = False, depends_on: Iterable[str] = (),
) -> Step:
    """创建站点；已存在则跳过，只有 force 时才删除重建"""

    def ready() -> bool:
        return not force and adapter.site_exists(site)

    def create() -> None:
        if force and adapter.site_exists(site):
            logger.warning("force 模式：删除已有站点 %s 后重建", site)
            adapter.site_drop(site, force=True)
        adapter.site_create(
            site,
            db_root_user=db_root_user,
            db_root_password=db_root_password,
            admin_password=admin_password or site,
        )

    return Step(
        name="create_site",
        description=f"创建站点 {site}",
        precondition=ready,
        action=create,
        postcondition=lambda: adapter.site_exists(site),
        depends_on=frozenset(depends_on),
    )


def fetch_app_step(
    adapter: ExternalToolAdapter, app: str, *,
    branch: str = "", url: str = "", depends_on: Iterable[str] = (),
) -> Step:
    return Step(
        name=f"fetch_app:{app}",
        description=f"拉取应用 {app}",
        precondition=lambda: adapter.app_fetched(app),
        action=lambda: adapter.app_fetch(app, branch=branch, url=url),
        depends_on=frozenset(depends_on),
    )


def install_app_step(
    adapter: ExternalToolAdapter, app: str, site: str, *, depends_on: Iterable[str] = (),
) -> Step:
    return Step(
        name=f"install_app:{app}",
        description=f"在 {site} 上安装 {app}",
        precondition=lambda: adapter.app_installed_on_site(app, site),
        action=lambda: adapter.app_install_on_site(app, site),
        depends_on=frozenset(depends_on),
    )


def set_default_site_step(
    adapter: ExternalToolAdapter, site: str, *, depends_on: Iterable[str] = (),
) -> Step:
    return Step(
        name="set_default_site",
        description=f"设置默认站点 {site}",
        precondition=lambda: adapter.default_site() == site,
        action=lambda: adapter.default_site_set(site),
        depends_on=frozenset(depends_on),
    )


def enable_scheduler_step(
    adapter: ExternalToolAdapter, site: str, *, depends_on: Iterable[str] = (),
) -> Step:
    return Step(
        name="enable_scheduler",
        description=f"启用 {site} 调度器",
        precondition=lambda: adapter.scheduler_enabled(site),
        action=lambda: adapter.scheduler_enable(site),
        depends_on=frozenset(depends_on),
    )


def disable_maintenance_mode_step(
    adapter: ExternalToolAdapter, site: str, *, depends_on: Iterable[str] = (),
) -> Step:
    return Step(
        name="disable_maintenance_mode",
        description=f"关闭 {site} 维护模式",
        precondition=lambda: not adapter.maintenance_mode(site),
        action=lambda: adapter.maintenance_mode_disable(site),
        depends_on=frozenset(depends_on),
    )


def setup_production_step(
    adapter: ExternalToolAdapter, user: str, *, depends_on: Iterable[str] = (),
) -> Step:
    return Step(
        name="setup_production",
        description="配置 nginx + supervisor",
        precondition=adapter.reverse_proxy_configured,
        action=lambda: adapter.reverse_proxy_configure(user),
        depends_on=frozenset(depends_on),
    )


def reload_services_step(adapter: ExternalToolAdapter, *, depends_on: Iterable[str] = ()) -> Step:
    return Step(
        name="reload_services",
        description="重载 nginx / supervisor",
        precondition=adapter.services_healthy,
        action=adapter.process_supervisor_reload,
        depends_on=frozenset(depends_on),
    )


# =========================================================================
# 完整目录
# =========================================================================


def _app_steps(
    adapter: ExternalToolAdapter, config: ProvisionConfig,
) -> tuple[list[Step], list[Step]]:
    """每个应用一对 fetch / install 步骤，按配置顺序串联（hrms 依赖 erpnext）"""
    fetches: list[Step] = []
    installs: list[Step] = []
    prev_fetch = prev_install = ""
    for app in config.apps:
        fetches.append(_fetch(adapter, config, app, prev_fetch))
        install_deps = {"create_site", f"fetch_app:{app.name}"}
        if prev_install:
            install_deps.add(prev_install)
        installs.append(install_app_step(adapter, app.name, config.site_name, depends_on=install_deps))
        prev_fetch, prev_install = f"fetch_app:{app.name}", f"install_app:{app.name}"
    return fetches, installs


def _fetch(adapter: ExternalToolAdapter, config: ProvisionConfig, app: AppSource, prev: str) -> Step:
    deps = {"init_workspace"}
    if prev:
        deps.add(prev)
    return fetch_app_step(
        adapter, app.name, branch=config.branch_for(app), url=app.url, depends_on=deps,
    )


def build_catalog(config: ProvisionConfig, adapter: ExternalToolAdapter) -> list[Step]:
    """按规范顺序构建完整步骤目录"""
    user, site = config.system_user, config.site_name
    tool_steps = [
        install_tool_step(adapter, tool, depends_on={"install_packages"})
        for tool in config.global_tools
    ]
    fetches, installs = _app_steps(adapter, config)
    last_install = installs[-1].name if installs else "create_site"

    return [
        system_update_step(adapter),
        create_user_step(adapter, user, password=config.system_user_password),
        install_packages_step(adapter, config.packages, depends_on={"system_update"}),
        *tool_steps,
        configure_db_charset_step(adapter, depends_on={"install_packages"}),
        set_db_root_password_step(
            adapter, config.db_root_user, config.db_root_password,
            depends_on={"install_packages", "configure_db_charset"},
        ),
        install_runtime_step(
            adapter, config.runtime_version, depends_on={"create_user", "install_packages"},
        ),
        install_app_cli_step(adapter, depends_on={"install_packages"}),
        init_workspace_step(
            adapter, config.frappe_branch,
            depends_on={"create_user", "install_runtime", "install_app_cli", *(s.name for s in tool_steps)},
        ),
        grant_home_access_step(adapter, user, depends_on={"create_user"}),
        create_site_step(
            adapter, site,
            db_root_user=config.db_root_user,
            db_root_password=config.db_root_password,
            admin_password=config.effective_admin_password,
            force=config.force,
            depends_on={"init_workspace", "set_db_root_password"},
        ),
        *fetches,
        *installs,
        set_default_site_step(adapter, site, depends_on={"create_site"}),
        enable_scheduler_step(adapter, site, depends_on={last_install}),
        disable_maintenance_mode_step(adapter, site, depends_on={"create_site"}),
        setup_production_step(
            adapter, user, depends_on={"grant_home_access", "set_default_site"},
        ),
        reload_services_step(adapter, depends_on={"setup_production"}),
    ]


# =========================================================================
# 预设
# =========================================================================


@dataclass(frozen=True)
class Preset:
    """命名预设：目标步骤 + 其传递依赖；targets 为空表示全部"""

    name: str
    description: str
    targets: tuple[str, ...] = ()


PRESETS: dict[str, Preset] = {
    p.name: p for p in (
        Preset("full", "完整安装（系统 → bench → 站点 → 生产环境）"),
        Preset(
            "prerequisites", "仅准备系统、数据库、运行时与 bench 目录",
            ("set_db_root_password", "init_workspace", "grant_home_access"),
        ),
        Preset("site", "创建站点并安装应用", ("enable_scheduler", "disable_maintenance_mode", "set_default_site")),
        Preset("production", "配置并重载 nginx / supervisor", ("reload_services",)),
    )
}


def select_steps(catalog: list[Step], targets: Iterable[str]) -> list[Step]:
    """选出目标步骤及其全部传递依赖，保持目录顺序；targets 为空返回全部"""
    wanted = list(targets)
    if not wanted:
        return list(catalog)

    by_name = {s.name: s for s in catalog}
    unknown = [t for t in wanted if t not in by_name]
    if unknown:
        raise ConfigError(f"未知步骤: {unknown}。可用: {list(by_name)}")

    selected: set[str] = set()
    stack = wanted[:]
    while stack:
        name = stack.pop()
        if name in selected:
            continue
        selected.add(name)
        # 未知依赖留给 Pipeline 报错
        stack.extend(d for d in by_name[name].depends_on if d in by_name)
    return [s for s in catalog if s.name in selected]


def steps_for_preset(catalog: list[Step], preset: str) -> list[Step]:
    if preset not in PRESETS:
        raise ConfigError(f"未知预设: {preset}。可用: {sorted(PRESETS)}")
    return select_steps(catalog, PRESETS[preset].targets)
