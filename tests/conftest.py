"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# 测试用的子进程脚本
FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
CHUNKED_WRITER = FIXTURES_DIR / "chunked_writer.py"


@pytest.fixture(autouse=True)
def clean_config(monkeypatch: pytest.MonkeyPatch):
    """清除 PROCSTREAM_* 环境变量并重新加载配置，测试结束后再恢复。"""
    from procstream.config import reload_config

    for key in list(os.environ):
        if key.startswith("PROCSTREAM_"):
            monkeypatch.delenv(key)
    reload_config()
    yield
    monkeypatch.undo()
    reload_config()


@pytest.fixture
def writer_argv() -> list[str]:
    """以当前解释器运行 chunked_writer.py 的命令前缀。"""
    return [sys.executable, str(CHUNKED_WRITER)]
