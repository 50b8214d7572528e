"""集中配置管理

用户级配置文件默认位于 ~/.bitscope/config.yml，可通过 BITSCOPE_CONFIG 覆盖。
引擎（Scope / 服务）只接收显式传入的 Config，全局单例仅供 CLI 入口使用。
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

from bitscope.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_GLOBAL_DIR = "~/.bitscope"
CONFIG_ENV = "BITSCOPE_CONFIG"


@dataclass
class Config:
    """bitscope 全局配置"""

    # 目录
    global_dir: str = DEFAULT_GLOBAL_DIR
    remotes_file: str = "remotes.yml"

    # 导出
    default_remote: str = ""
    http_timeout: int = 30

    # 构建：编译器名 -> 命令模板，{impl} / {dist} 会被替换
    compilers: dict[str, str] = field(default_factory=dict)

    # 日志
    log_level: str = "WARNING"
    log_json: bool = False

    extra: dict = field(default_factory=dict)

    @property
    def global_remotes_path(self) -> Path:
        """全局远端注册表文件路径"""
        path = Path(self.remotes_file).expanduser()
        if path.is_absolute():
            return path
        return Path(self.global_dir).expanduser() / path

    @classmethod
    def from_file(cls, path: str | Path) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            return cls()
        known = {f for f in cls.__dataclass_fields__}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


def default_config_path() -> Path:
    return Path(os.getenv(CONFIG_ENV, f"{DEFAULT_GLOBAL_DIR}/config.yml")).expanduser()


_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则从默认路径加载）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config.from_file(default_config_path())
    return _current


def init_config(path: str | Path | None = None) -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    target = Path(path) if path else default_config_path()
    _current = Config.from_file(target)
    logger.info("配置已加载: %s", target)
    return _current


def reset_config() -> None:
    global _current  # noqa: PLW0603
    _current = None
