"""外部工具适配器协议

编排器从不直接包含包管理器、数据库客户端、进程管理器的逻辑，
所有改变系统状态的动作都经由 ExternalToolAdapter。

使用 typing.Protocol 而非 ABC，测试中的记录型假实现无需继承即可满足协议。
查询类方法必须无副作用；动作类方法失败时抛 ExecutionError。
"""

from __future__ import annotations

from typing import Protocol


class ExternalToolAdapter(Protocol):
    """包管理器 / 数据库 / 运行时 / 应用 CLI / 反向代理 的统一门面"""

    # ---- 系统包 ----

    def system_up_to_date(self) -> bool: ...

    def system_update(self) -> None: ...

    def packages_installed(self, names: list[str]) -> bool: ...

    def package_install(self, names: list[str]) -> None: ...

    def global_tool_available(self, name: str) -> bool: ...

    def global_tool_install(self, name: str) -> None: ...

    # ---- 系统用户 ----

    def user_exists(self, name: str) -> bool: ...

    def user_in_group(self, name: str, group: str) -> bool: ...

    def user_create(self, name: str, *, password: str = "", groups: list[str] | None = None) -> None: ...

    def home_access_granted(self, user: str) -> bool: ...

    def home_access_grant(self, user: str) -> None: ...

    # ---- 数据库 ----

    def db_charset_configured(self) -> bool: ...

    def db_configure_charset(self) -> None: ...

    def db_root_password_works(self, user: str, password: str) -> bool: ...

    def db_set_root_password(self, user: str, password: str) -> None: ...

    # ---- 运行时与应用 CLI ----

    def runtime_installed(self, version: str) -> bool: ...

    def runtime_install(self, version: str) -> None: ...

    def app_cli_installed(self) -> bool: ...

    def app_cli_install(self) -> None: ...

    def workspace_exists(self) -> bool: ...

    def workspace_init(self, branch: str) -> None: ...

    # ---- 站点与应用 ----

    def site_exists(self, name: str) -> bool: ...

    def site_create(
        self, name: str, *, db_root_user: str, db_root_password: str, admin_password: str,
    ) -> None: ...

    def site_drop(self, name: str, *, force: bool = False) -> None: ...

    def app_fetched(self, app: str) -> bool: ...

    def app_fetch(self, app: str, *, branch: str = "", url: str = "") -> None: ...

    def app_installed_on_site(self, app: str, site: str) -> bool: ...

    def app_install_on_site(self, app: str, site: str) -> None: ...

    def default_site(self) -> str: ...

    def default_site_set(self, site: str) -> None: ...

    def scheduler_enabled(self, site: str) -> bool: ...

    def scheduler_enable(self, site: str) -> None: ...

    def maintenance_mode(self, site: str) -> bool: ...

    def maintenance_mode_disable(self, site: str) -> None: ...

    # ---- 反向代理 / 进程管理 ----

    def reverse_proxy_configured(self) -> bool: ...

    def reverse_proxy_configure(self, user: str) -> None: ...

    def services_healthy(self) -> bool: ...

    def process_supervisor_reload(self) -> None: ...

    # ---- 其他 ----

    def host_ip(self) -> str: ...
