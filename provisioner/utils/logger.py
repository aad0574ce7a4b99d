"""日志配置

支持普通文本和结构化 JSON 两种输出格式，并在所有输出中屏蔽密码。
外部工具的命令行会携带数据库 root 密码和管理员密码，因此屏蔽在 handler 层做。
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterable
from datetime import datetime, timezone

MASK = "***"


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器，便于 CI / 日志平台消费

    输出格式:
        {"timestamp": ..., "level": "INFO", "logger": "...", "message": "...",
         "module": ..., "function": ..., "line": 42, "exception": "..."}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


class SecretMaskFilter(logging.Filter):
    """把已知密码替换为 ***

    先格式化消息再替换，替换后清空 args，保证后续 formatter 不会再拼回原文。
    """

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        # 长的先替换，避免短密码是长密码子串时残留
        self.secrets = sorted({s for s in secrets if s}, key=len, reverse=True)

    def mask(self, text: str) -> str:
        for s in self.secrets:
            text = text.replace(s, MASK)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if self.secrets:
            record.msg = self.mask(record.getMessage())
            record.args = None
        return True


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    secrets: Iterable[str] = (),
) -> None:
    """配置根日志器

    参数:
        level: 日志级别字符串（DEBUG, INFO, WARNING, ERROR）
        json_output: 为 True 时使用 JSON 格式，否则使用人类可读格式
        secrets: 需要在日志中屏蔽的字符串（密码等）

    说明:
        - 输出到 stderr，stdout 留给 CLI 的结果摘要
        - 自动清理已有 handlers，避免重复输出；可重复调用以追加密码
    """
    reset_logging()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        fmt = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"
        handler.setFormatter(logging.Formatter(fmt))
    handler.addFilter(SecretMaskFilter(secrets))

    root.addHandler(handler)


def reset_logging() -> None:
    """清理根日志器上的所有 handlers"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
