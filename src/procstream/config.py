"""procstream 环境变量配置管理。

环境变量:
    PROCSTREAM_EMIT_PARTIAL: 进程退出时是否把未以换行结尾的最后一段作为一行输出
        - true/1/yes = 输出
        - false/0/no = 丢弃 (默认)

    PROCSTREAM_DECODE_ERRORS: 输出流解码策略
        - replace = 无效 UTF-8 序列替换为 U+FFFD (默认)
        - strict = 解码失败时以 StreamDecodeError 结束本次运行

    PROCSTREAM_READ_SIZE: 每次从管道读取的最大字节数
        - 默认 4096，限制在 1 - 1048576 范围

    PROCSTREAM_TERM_TIMEOUT: terminate() 发送 SIGTERM 后的等待时间（秒）
        - 默认 2.0 秒

    PROCSTREAM_KILL_TIMEOUT: 发送 SIGKILL 后的等待时间（秒）
        - 默认 1.0 秒

    PROCSTREAM_EXCLUSIVE_READERS: 每个流只允许一个挂起的读取者
        - true/1/yes = 开启 (第二个并发读取者抛出 ConcurrentConsumerError)
        - false/0/no = 关闭 (默认，读取者按 FIFO 排队)

    PROCSTREAM_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = [
    "Config",
    "DecodeErrorPolicy",
    "load_config",
    "get_config",
    "reload_config",
]

DEFAULT_READ_SIZE = 4096
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0


class DecodeErrorPolicy(Enum):
    """输出流解码策略。

    - REPLACE: 替换无效序列，保证按行缓冲始终可以继续
    - STRICT: 解码失败即判定本次运行失败
    """

    REPLACE = "replace"
    STRICT = "strict"

    @classmethod
    def from_string(cls, value: str) -> "DecodeErrorPolicy":
        """从字符串解析策略，无效值返回 REPLACE。"""
        value = value.lower().strip()
        for policy in cls:
            if policy.value == value:
                return policy
        return cls.REPLACE


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    """解析浮点数环境变量，并限制在 [low, high] 范围内。"""
    if not value:
        return default
    try:
        return max(low, min(float(value), high))
    except ValueError:
        return default


def _parse_read_size(value: str | None) -> int:
    """解析读取块大小。"""
    if not value:
        return DEFAULT_READ_SIZE
    try:
        return max(1, min(int(value), 1024 * 1024))
    except ValueError:
        return DEFAULT_READ_SIZE


@dataclass
class Config:
    """procstream 配置。

    Attributes:
        emit_partial_on_exit: 退出时输出未结束的最后一行
        decode_errors: 解码策略
        read_size: 每次读取的字节数
        term_timeout: SIGTERM 后等待时间（秒）
        kill_timeout: SIGKILL 后等待时间（秒）
        exclusive_readers: 每个流仅允许一个挂起的读取者
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    emit_partial_on_exit: bool = False
    decode_errors: DecodeErrorPolicy = DecodeErrorPolicy.REPLACE
    read_size: int = DEFAULT_READ_SIZE
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    exclusive_readers: bool = False
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(emit_partial_on_exit={self.emit_partial_on_exit}, "
            f"decode_errors={self.decode_errors.value}, "
            f"read_size={self.read_size}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"exclusive_readers={self.exclusive_readers}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "procstream"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"procstream_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("PROCSTREAM_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None
    decode_errors = os.environ.get("PROCSTREAM_DECODE_ERRORS")

    return Config(
        emit_partial_on_exit=_parse_bool(os.environ.get("PROCSTREAM_EMIT_PARTIAL"), default=False),
        decode_errors=(
            DecodeErrorPolicy.from_string(decode_errors)
            if decode_errors
            else DecodeErrorPolicy.REPLACE
        ),
        read_size=_parse_read_size(os.environ.get("PROCSTREAM_READ_SIZE")),
        term_timeout=_parse_float(
            os.environ.get("PROCSTREAM_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT, 0.1, 60.0
        ),
        kill_timeout=_parse_float(
            os.environ.get("PROCSTREAM_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT, 0.1, 60.0
        ),
        exclusive_readers=_parse_bool(
            os.environ.get("PROCSTREAM_EXCLUSIVE_READERS"), default=False
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
