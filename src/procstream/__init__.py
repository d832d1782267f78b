"""procstream - 子进程输出按行异步读取 + 系统服务封装。

环境变量:
    PROCSTREAM_EMIT_PARTIAL: 退出时输出未以换行结尾的最后一行 (默认 false)
    PROCSTREAM_DECODE_ERRORS: 解码策略 replace/strict (默认 replace)
    PROCSTREAM_LOG_DEBUG: 日志输出到临时文件 (默认 false)

用法:
    procstream -- git log --oneline
    procstream --info
"""

__version__ = "0.1.0"

from .errors import (
    ConcurrentConsumerError,
    ExecutorBusyError,
    ProcstreamError,
    SpawnError,
    StreamDecodeError,
)
from .runtime import (
    END_OF_STREAM,
    LineBuffer,
    ProcessExecutor,
    RunOutcome,
    RunResult,
    RunState,
    StreamName,
    run_captured,
    run_synchronously,
)
from .system import System

__all__ = [
    "__version__",
    "END_OF_STREAM",
    "ConcurrentConsumerError",
    "ExecutorBusyError",
    "LineBuffer",
    "ProcessExecutor",
    "ProcstreamError",
    "RunOutcome",
    "RunResult",
    "RunState",
    "SpawnError",
    "StreamDecodeError",
    "StreamName",
    "System",
    "run_captured",
    "run_synchronously",
]
