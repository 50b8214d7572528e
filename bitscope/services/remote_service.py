"""远端注册服务: remote add / rm / list

--global 写入用户级 remotes.yml，否则写入当前 scope 的 scope.json。
"""

from __future__ import annotations

import asyncio
import logging

from bitscope.core.exceptions import RemoteNotFound
from bitscope.core.remotes import GlobalRemotes, make_remote
from bitscope.core.scope import Scope

logger = logging.getLogger(__name__)


class RemoteService:
    """远端别名管理"""

    def __init__(self, scope: Scope | None, global_remotes: GlobalRemotes) -> None:
        self.scope = scope
        self.global_remotes = global_remotes

    def _local_scope(self) -> Scope:
        if self.scope is None:
            raise RemoteNotFound("no local scope, use --global")
        return self.scope

    def add(self, address: str, alias: str | None = None, *, global_: bool = False) -> str:
        """注册远端；未给出别名时使用远端 scope 自报的名称"""
        if alias is None:
            probe = make_remote("probe", address)
            alias = str(asyncio.run(probe.describe())["name"])
        make_remote(alias, address)

        if global_:
            self.global_remotes.add(alias, address)
        else:
            scope = self._local_scope()
            scope.scope_json.add_remote(alias, address)
            scope.ensure_dir()
            logger.info("本地远端已添加: %s -> %s", alias, address)
        return alias

    def remove(self, alias: str, *, global_: bool = False) -> None:
        if global_:
            removed = self.global_remotes.remove(alias)
        else:
            scope = self._local_scope()
            removed = scope.scope_json.remove_remote(alias)
            if removed:
                scope.ensure_dir()
        if not removed:
            raise RemoteNotFound(alias)

    def list_remotes(self, *, global_: bool = False) -> dict[str, str]:
        """--global 只列全局表，否则列出合并后的有效表（本地优先）"""
        if global_ or self.scope is None:
            return self.global_remotes.to_dict()
        return self.scope.remotes().to_dict()
