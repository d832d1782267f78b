"""procstream 异常类。

procstream v0.1.0

错误分类：
- SpawnError: 操作系统无法创建子进程（可执行文件不存在、权限不足）
- StreamDecodeError: 输出块无法按 UTF-8 解码（仅 strict 解码策略）
- ConcurrentConsumerError: 独占读取模式下同一流出现第二个并发读取者
- ExecutorBusyError: 执行器仍在运行时再次调用 execute

流结束（END_OF_STREAM）不是错误，见 runtime.executor。
"""

from __future__ import annotations

from collections.abc import Sequence

__all__ = [
    "ProcstreamError",
    "SpawnError",
    "StreamDecodeError",
    "ConcurrentConsumerError",
    "ExecutorBusyError",
]


class ProcstreamError(Exception):
    """procstream 基础异常。"""
    pass


class SpawnError(ProcstreamError):
    """子进程创建失败（不重试）。

    Attributes:
        command: 尝试执行的命令
        cause: 底层 OSError
    """

    def __init__(self, command: Sequence[str], cause: BaseException) -> None:
        self.command = tuple(command)
        self.cause = cause
        executable = self.command[0] if self.command else ""
        super().__init__(f"failed to spawn {executable!r}: {cause}")


class StreamDecodeError(ProcstreamError):
    """输出流解码失败。

    Attributes:
        stream: 流名称 (stdout/stderr)
        cause: 底层 UnicodeDecodeError
    """

    def __init__(self, stream: str, cause: UnicodeDecodeError) -> None:
        self.stream = stream
        self.cause = cause
        super().__init__(f"cannot decode {stream} as utf-8: {cause}")


class ConcurrentConsumerError(ProcstreamError):
    """独占读取模式下，同一流已有挂起的读取者。"""

    def __init__(self, stream: str) -> None:
        self.stream = stream
        super().__init__(f"another reader is already waiting on {stream}")


class ExecutorBusyError(ProcstreamError):
    """执行器正在运行子进程，不能再次 execute。"""

    def __init__(self, pid: int | None) -> None:
        self.pid = pid
        super().__init__(f"executor is already running a process (pid={pid})")
