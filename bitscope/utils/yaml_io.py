"""YAML 文件统一读写工具

用于用户级配置（config.yml）和全局远端注册表（remotes.yml）。
统一 encoding="utf-8"、空值保护、原子写入。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from bitscope.utils.fs import atomic_write

logger = logging.getLogger(__name__)

# 配置类文件不应很大，超过上限视为异常输入
MAX_YAML_SIZE = 1024 * 1024


def load_yaml(path: str | Path) -> dict[str, Any]:
    """安全读取 YAML 文件

    返回:
        dict: 解析后的字典。文件不存在、为空或顶层不是字典时返回空字典

    异常:
        yaml.YAMLError: YAML 格式错误
        ValueError: 文件超过 MAX_YAML_SIZE
    """
    p = Path(path)
    if not p.exists():
        return {}

    file_size = p.stat().st_size
    if file_size > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML file too large: {p} ({file_size} bytes, limit {MAX_YAML_SIZE})"
        )

    try:
        with open(p, encoding="utf-8") as f:
            result = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error("解析 YAML 文件失败: %s, 错误: %s", p, e)
        raise

    if result is None:
        return {}
    if not isinstance(result, dict):
        logger.warning(
            "%s 顶层不是字典 (实际类型: %s)，按空处理", p, type(result).__name__,
        )
        return {}
    return result


def save_yaml(path: str | Path, data: Any) -> None:
    """原子写入 YAML 文件（保持键顺序，允许 Unicode）"""
    p = Path(path)
    try:
        content = yaml.dump(
            data, default_flow_style=False,
            allow_unicode=True, sort_keys=False,
        )
        atomic_write(p, content)
    except yaml.YAMLError as e:
        logger.error("序列化 YAML 数据失败: %s, 错误: %s", p, e)
        raise
    except (PermissionError, OSError) as e:
        logger.error("写入文件失败: %s, 错误: %s", p, e)
        raise
