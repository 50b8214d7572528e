"""服务容器: 由 Config 组装 scope 所需的协作者

Config 在入口处加载一次，由容器显式传给 Scope / 服务；引擎本身不读取全局状态。

用法:
    container = ServiceContainer(config=cfg, cwd=Path("."))
    container.workspace.status()
    container.remotes.list_remotes()
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from bitscope.core.exceptions import ScopeNotFound

if TYPE_CHECKING:
    from bitscope.core.build import CommandBuilder
    from bitscope.core.config import Config
    from bitscope.core.remotes import GlobalRemotes
    from bitscope.core.scope import Scope
    from bitscope.services.remote_service import RemoteService
    from bitscope.services.workspace_service import WorkspaceService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(self, config: Config | None = None, cwd: Path | None = None) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from bitscope.core.config import get_config
            config = get_config()
        self._config = config
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()

    @property
    def config(self) -> Config:
        return self._config

    @property
    def global_remotes(self) -> GlobalRemotes:
        if "global_remotes" not in self._instances:
            from bitscope.core.remotes import GlobalRemotes
            self._instances["global_remotes"] = GlobalRemotes(self._config.global_remotes_path)
        return self._instances["global_remotes"]  # type: ignore[return-value]

    @property
    def builder(self) -> CommandBuilder | None:
        if not self._config.compilers:
            return None
        if "builder" not in self._instances:
            from bitscope.core.build import CommandBuilder
            self._instances["builder"] = CommandBuilder(self._config.compilers)
        return self._instances["builder"]  # type: ignore[return-value]

    def scope_kwargs(self) -> dict[str, object]:
        return {
            "global_remotes": self.global_remotes,
            "builder": self.builder,
            "timeout": self._config.http_timeout,
        }

    @property
    def workspace(self) -> WorkspaceService:
        if "workspace" not in self._instances:
            from bitscope.services.workspace_service import WorkspaceService
            self._instances["workspace"] = WorkspaceService.discover(
                self.cwd,
                default_remote=self._config.default_remote or None,
                **self.scope_kwargs(),
            )
        return self._instances["workspace"]  # type: ignore[return-value]

    def current_scope(self) -> Scope | None:
        """当前目录所属的 scope：工作区 scope 优先，其次是裸 scope"""
        try:
            return self.workspace.scope
        except ScopeNotFound:
            pass
        from bitscope.core.scope import Scope
        try:
            return Scope.load(self.cwd, **self.scope_kwargs())
        except ScopeNotFound:
            return None

    @property
    def remotes(self) -> RemoteService:
        if "remotes" not in self._instances:
            from bitscope.services.remote_service import RemoteService
            self._instances["remotes"] = RemoteService(self.current_scope(), self.global_remotes)
        return self._instances["remotes"]  # type: ignore[return-value]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
