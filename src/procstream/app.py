"""procstream 命令行入口。

逐行转发子进程的 stdout/stderr，并以子进程的退出码退出。

用法:
    procstream [--prefix] [--emit-partial] [--timeout S] -- COMMAND [ARGS...]
    procstream --sync -- COMMAND [ARGS...]
    procstream --info
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from typing import TextIO

import anyio

from . import __version__
from .config import DecodeErrorPolicy, get_config
from .errors import ProcstreamError, SpawnError
from .runtime import END_OF_STREAM, ProcessExecutor, RunOutcome, StreamName, run_captured
from .system import System

__all__ = ["build_parser", "stream_command", "run_command", "main"]

logger = logging.getLogger(__name__)

# 与 shell 约定一致的退出码
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


def _shell_exit_code(code: int) -> int:
    """负数退出码（被信号终止）转换为 128 + 信号值。"""
    return code if code >= 0 else 128 - code


def build_parser() -> argparse.ArgumentParser:
    """构建命令行参数解析器。"""
    parser = argparse.ArgumentParser(
        prog="procstream",
        description="Run a command and forward its output line by line.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--info", action="store_true", help="print host information as JSON and exit")
    parser.add_argument("--sync", action="store_true", help="run to completion, then print all output")
    parser.add_argument("--prefix", action="store_true", help="prefix lines with [stdout]/[stderr]")
    parser.add_argument(
        "--emit-partial",
        action="store_true",
        default=None,
        help="emit a final line that lacks a trailing newline",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="fail on output that is not valid UTF-8",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="seconds before the command is terminated",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging on stderr")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="command and arguments")
    return parser


async def stream_command(
    command: Sequence[str],
    *,
    prefix: bool = False,
    emit_partial: bool | None = None,
    strict: bool = False,
    timeout: float | None = None,
    out: TextIO | None = None,
    err: TextIO | None = None,
) -> int:
    """执行命令并逐行转发输出。

    Args:
        command: 命令及参数
        prefix: 是否给每行加 [stdout]/[stderr] 前缀
        emit_partial: 是否输出结尾不完整的行（None = 使用配置）
        strict: 输出不是合法 UTF-8 时失败
        timeout: 整个运行的最长时间（秒），超时后终止子进程
        out: stdout 行的输出目标
        err: stderr 行与错误信息的输出目标

    Returns:
        shell 风格的退出码
    """
    out = out or sys.stdout
    err = err or sys.stderr
    targets = {StreamName.STDOUT: out, StreamName.STDERR: err}

    executor = ProcessExecutor(
        emit_partial_on_exit=emit_partial,
        decode_errors=DecodeErrorPolicy.STRICT if strict else None,
    )

    async def forward(stream: StreamName) -> None:
        label = f"[{stream.value}] " if prefix else ""
        while True:
            line = await executor.next_line(stream)
            if line is END_OF_STREAM:
                return
            print(f"{label}{line}", file=targets[stream], flush=True)

    async with executor:
        executor.execute(command)
        try:
            with anyio.fail_after(timeout):
                results = await asyncio.gather(
                    forward(StreamName.STDOUT),
                    forward(StreamName.STDERR),
                    return_exceptions=True,
                )
        except TimeoutError:
            print(f"procstream: timed out after {timeout}s, terminating", file=err)
            await executor.terminate()
            return EXIT_TIMEOUT

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            error = failures[0]
            if isinstance(error, SpawnError):
                print(f"procstream: {error}", file=err)
                return EXIT_NOT_FOUND
            if isinstance(error, ProcstreamError):
                print(f"procstream: {error}", file=err)
                return 1
            raise error

        exit_code = await executor.wait()

    logger.debug(f"Command finished argv={command[0]} exit_code={exit_code}")
    return _shell_exit_code(exit_code)


def run_command(
    command: Sequence[str],
    *,
    timeout: float | None = None,
    out: TextIO | None = None,
    err: TextIO | None = None,
) -> int:
    """同步执行命令，结束后一次性输出全部 stdout/stderr。

    启动失败返回 127，超时返回 124，被信号终止返回 128 + 信号值。
    """
    out = out or sys.stdout
    err = err or sys.stderr

    outcome, result = run_captured(command, timeout=timeout)
    out.write(result.stdout)
    err.write(result.stderr)

    if outcome is RunOutcome.LAUNCH_FAILED:
        print(f"procstream: failed to run {command[0]!r}", file=err)
        return EXIT_NOT_FOUND
    if outcome is RunOutcome.TIMED_OUT:
        print(f"procstream: timed out after {timeout}s, killed", file=err)
        return EXIT_TIMEOUT
    return _shell_exit_code(result.exit_code)


def _configure_logging(verbose: bool) -> None:
    """配置日志输出。

    - PROCSTREAM_LOG_DEBUG: DEBUG 级别写入临时文件
    - --verbose: DEBUG 级别写到 stderr
    - 默认: INFO 级别写到 stderr
    """
    config = get_config()
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    if config.log_debug and config.log_file:
        handler: logging.Handler = logging.FileHandler(config.log_file, encoding="utf-8")
        log_level = logging.DEBUG
    else:
        handler = logging.StreamHandler(sys.stderr)
        log_level = logging.DEBUG if verbose else logging.INFO
    handler.setFormatter(formatter)

    # 第三方库只输出 WARNING 及以上
    logging.basicConfig(level=logging.WARNING, handlers=[handler])
    logging.getLogger("procstream").setLevel(log_level)


def main(argv: Sequence[str] | None = None) -> None:
    """主入口点。"""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.info:
        print(System().info().model_dump_json(indent=2))
        sys.exit(0)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("a command is required")

    logger.debug(f"Config: {get_config()}")

    if args.sync:
        sys.exit(run_command(command, timeout=args.timeout))

    sys.exit(
        asyncio.run(
            stream_command(
                command,
                prefix=args.prefix,
                emit_partial=args.emit_partial,
                strict=args.strict,
                timeout=args.timeout,
            )
        )
    )


if __name__ == "__main__":
    main()
