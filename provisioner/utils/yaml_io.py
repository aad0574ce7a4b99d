"""配置文件读取与原子写入工具

统一 encoding="utf-8"、大小保护、目录自动创建、原子写入。
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from provisioner.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

# 配置文件最大 1MB，安装配置不应更大
MAX_YAML_SIZE = 1024 * 1024


def atomic_write(path: str | Path, content: str, *, mode: int = 0o644) -> None:
    """原子写入文件：先写同目录临时文件再 rename，防止中途崩溃留下半个文件"""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(p.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(tmp, mode)
        os.replace(tmp, str(p))
    except Exception:
        # 只捕获普通异常，不拦截 KeyboardInterrupt/SystemExit
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 映射文件

    文件不存在或为空返回空字典；顶层不是映射、格式错误或文件过大
    均抛出 ConfigError。
    """
    p = Path(path)
    if not p.exists():
        return {}

    file_size = p.stat().st_size
    if file_size > MAX_YAML_SIZE:
        raise ConfigError(f"配置文件过大: {p} ({file_size} 字节)")

    try:
        with open(p, encoding="utf-8") as f:
            result = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error("解析 YAML 文件失败: %s", p)
        raise ConfigError(f"YAML 格式错误: {p}: {e}") from e

    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ConfigError(
            f"{p} 顶层必须是映射 (实际类型: {type(result).__name__})"
        )
    return result


def save_json(path: str | Path, data: Any) -> None:
    """原子写入 JSON 文件（运行报告）"""
    atomic_write(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")
    logger.info("已写入: %s", path)
