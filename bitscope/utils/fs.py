"""文件读写工具: 原子写入与 JSON 文件

scope 的 dependencies.json / scope.json / 历史记录以及工作区 .bitmap
都经由这里落盘，统一 UTF-8、键排序与原子替换。
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)


def atomic_write(path: Path, content: str | bytes) -> None:
    """原子写入文件：先写同目录临时文件再 rename

    参数:
        path: 目标文件路径（父目录不存在时自动创建）
        content: 文本或字节内容

    异常:
        OSError: 写入或替换失败，临时文件会被清理
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        if isinstance(content, bytes):
            with os.fdopen(fd, "wb") as f:
                f.write(content)
        else:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
        os.replace(tmp, str(path))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def dump_json(data: Any) -> str:
    """序列化为稳定的 JSON 文本（键排序 + 末尾换行），保证重复写入字节一致"""
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def load_json(path: str | Path, default: Callable[[], Any] = dict) -> Any:
    """读取 JSON 文件

    文件不存在或为空时返回 default()；内容损坏时抛出 json.JSONDecodeError，
    由调用方决定是否当作“不可读”处理。
    """
    p = Path(path)
    if not p.exists():
        return default()
    raw = p.read_text(encoding="utf-8")
    if not raw.strip():
        return default()
    return json.loads(raw)


def save_json(path: str | Path, data: Any) -> None:
    """原子写入 JSON 文件"""
    p = Path(path)
    try:
        atomic_write(p, dump_json(data))
    except (PermissionError, OSError) as e:
        logger.error("写入文件失败: %s, 错误: %s", p, e)
        raise
