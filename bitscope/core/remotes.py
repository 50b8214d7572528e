"""远端注册表与远端 scope 客户端

远端是指向另一个 scope 的命名指针 (alias, address)：
  - address 为本地路径: 直接加载该目录下的 scope（LocalScopeRemote）
  - address 为 http(s) URL: 调用 bitscope serve 暴露的 HTTP 接口（HttpRemote）

注册表由全局表（~/.bitscope/remotes.yml）与 scope 本地表（scope.json）合并，
别名冲突时本地表优先。合并在使用时进行，不读取任何进程级全局状态。
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator

from bitscope.core.bit_id import BitId
from bitscope.core.exceptions import RemoteError, RemoteNotFound, ScopeNotFound, ValidationError
from bitscope.core.registry import YamlRegistry
from bitscope.utils.net import is_http_address, validate_url_scheme

if TYPE_CHECKING:
    from bitscope.core.scope import Scope

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


@dataclass(frozen=True)
class Archive:
    """传输单元：组件标识符 + 归档字节"""

    id: str
    contents: bytes

    def to_json(self) -> dict[str, str]:
        return {"id": self.id, "contents": base64.b64encode(self.contents).decode("ascii")}

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Archive:
        try:
            return cls(id=str(data["id"]), contents=base64.b64decode(data["contents"]))
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteError(f"malformed archive payload: {e}") from e


@dataclass(frozen=True)
class PushResult:
    """推送确认：接收方 scope 名 + 其入库的标识符"""

    scope: str
    ids: list[str]


class Remote:
    """远端 scope 基类"""

    def __init__(self, alias: str, address: str) -> None:
        self.alias = alias
        self.address = address

    async def describe(self) -> dict[str, Any]:
        raise NotImplementedError

    async def fetch(self, ids: list[BitId]) -> list[Archive]:
        raise NotImplementedError

    async def push(self, archive: Archive) -> PushResult:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.alias!r}, {self.address!r})"


class LocalScopeRemote(Remote):
    """同一文件系统上的另一个 scope"""

    def _open(self) -> Scope:
        from bitscope.core.scope import Scope
        try:
            return Scope.load(Path(self.address).expanduser())
        except ScopeNotFound as e:
            raise RemoteError(f"{self.alias}: no scope at {self.address}") from e

    async def describe(self) -> dict[str, Any]:
        scope = await asyncio.to_thread(self._open)
        return scope.describe()

    async def fetch(self, ids: list[BitId]) -> list[Archive]:
        logger.info("从远端 %s 拉取: %s", self.alias, ", ".join(map(str, ids)))
        scope = await asyncio.to_thread(self._open)
        return await scope.fetch(ids)

    async def push(self, archive: Archive) -> PushResult:
        logger.info("推送 %s -> %s", archive.id, self.alias)
        scope = await asyncio.to_thread(self._open)
        stored = await scope.upload(archive.id, archive.contents)
        return PushResult(scope=scope.name, ids=[str(c.id) for c in stored])


class HttpRemote(Remote):
    """通过 HTTP 访问的远端 scope（服务端见 bitscope.web.app）"""

    def __init__(self, alias: str, address: str, timeout: int = DEFAULT_TIMEOUT) -> None:
        validate_url_scheme(address, context=f"remote {alias}")
        super().__init__(alias, address.rstrip("/"))
        self.timeout = timeout

    def _request(self, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.address}{path}"
        data = None
        headers = {"Accept": "application/json"}
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        req = urllib.request.Request(
            url, data=data, headers=headers, method="POST" if data else "GET",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:  # nosec B310
                body = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")[:300]
            raise RemoteError(f"{url} -> HTTP {e.code}: {detail}") from e
        except (urllib.error.URLError, OSError, json.JSONDecodeError) as e:
            raise RemoteError(f"{url}: {e}") from e
        if not isinstance(body, dict):
            raise RemoteError(f"{url}: unexpected response")
        return body

    async def describe(self) -> dict[str, Any]:
        return await asyncio.to_thread(self._request, "/api/scope")

    async def fetch(self, ids: list[BitId]) -> list[Archive]:
        logger.info("从远端 %s 拉取: %s", self.alias, ", ".join(map(str, ids)))
        body = await asyncio.to_thread(
            self._request, "/api/scope/fetch", {"ids": [str(i) for i in ids]},
        )
        return [Archive.from_json(item) for item in body.get("archives", [])]

    async def push(self, archive: Archive) -> PushResult:
        logger.info("推送 %s -> %s", archive.id, self.alias)
        body = await asyncio.to_thread(self._request, "/api/scope/upload", archive.to_json())
        if "scope" not in body:
            raise RemoteError(f"{self.address}: upload was not confirmed")
        return PushResult(scope=str(body["scope"]), ids=list(body.get("ids", [])))


def make_remote(alias: str, address: str, *, timeout: int = DEFAULT_TIMEOUT) -> Remote:
    if not alias or "/" in alias:
        raise ValidationError(f"illegal remote alias '{alias}'")
    if not address:
        raise ValidationError(f"remote '{alias}' has no address")
    if is_http_address(address):
        return HttpRemote(alias, address, timeout=timeout)
    if "://" in address:
        raise ValidationError(f"unsupported remote address '{address}'")
    return LocalScopeRemote(alias, address)


class Remotes:
    """合并后的远端集合（别名 -> Remote）"""

    def __init__(self, remotes: dict[str, Remote] | None = None) -> None:
        self._remotes: dict[str, Remote] = dict(remotes or {})

    @classmethod
    def load(cls, table: dict[str, str], *, timeout: int = DEFAULT_TIMEOUT) -> Remotes:
        return cls({
            alias: make_remote(alias, address, timeout=timeout)
            for alias, address in table.items()
        })

    def resolve(self, alias: str | None) -> Remote:
        """按别名取远端，不存在时抛 RemoteNotFound"""
        remote = self._remotes.get(alias or "")
        if remote is None:
            raise RemoteNotFound(alias or "<none>")
        return remote

    def merged(self, other: Remotes) -> Remotes:
        """合并，other 中的同名别名覆盖当前"""
        return Remotes({**self._remotes, **other._remotes})

    def to_dict(self) -> dict[str, str]:
        return {alias: r.address for alias, r in sorted(self._remotes.items())}

    def __iter__(self) -> Iterator[Remote]:
        return iter(self._remotes.values())

    def __len__(self) -> int:
        return len(self._remotes)

    def __contains__(self, alias: object) -> bool:
        return alias in self._remotes


class GlobalRemotes(YamlRegistry):
    """用户级远端注册表（remotes.yml 的 remotes 段）"""

    section_key = "remotes"

    def add(self, alias: str, address: str) -> None:
        make_remote(alias, address)
        self._put(alias, address)
        logger.info("全局远端已添加: %s -> %s", alias, address)

    def remove(self, alias: str) -> bool:
        if not self._remove(alias):
            return False
        logger.info("全局远端已移除: %s", alias)
        return True

    def to_dict(self) -> dict[str, str]:
        return {alias: str(address) for alias, address in sorted(self._items().items())}
