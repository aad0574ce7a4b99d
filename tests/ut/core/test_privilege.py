"""权限检查测试"""

from __future__ import annotations

import pytest

from provisioner.core import privilege
from provisioner.core.exceptions import PermissionDeniedError


def test_root_passes(monkeypatch) -> None:
    monkeypatch.setattr(privilege.os, "geteuid", lambda: 0)
    assert privilege.is_privileged() is True
    privilege.require_privilege()


def test_non_root_denied(monkeypatch) -> None:
    monkeypatch.setattr(privilege.os, "geteuid", lambda: 1000)
    with pytest.raises(PermissionDeniedError, match="euid=1000"):
        privilege.require_privilege()
