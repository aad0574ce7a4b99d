"""调用权限检查 - 在任何步骤执行前进行一次"""

from __future__ import annotations

import os

from provisioner.core.exceptions import PermissionDeniedError


def is_privileged() -> bool:
    return os.geteuid() == 0


def require_privilege() -> None:
    """非 root 运行时抛 PermissionDeniedError"""
    if not is_privileged():
        raise PermissionDeniedError(
            f"需要 root 权限运行（当前 euid={os.geteuid()}），请使用 sudo"
        )
