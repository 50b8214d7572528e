"""Scope 仓库引擎

一个 scope 目录:
    scope.json          名称 + 本地远端表
    dependencies.json   依赖图
    sources/ external/ tmp/ cache/   四个存储区（sources/ 兼作 scope 标记）

所有涉及磁盘/网络的操作都是协程。同一闭包内的兄弟依赖用 asyncio.gather 并发拉取，
任一失败立即向上传播；落盘只发生在全部依赖拉取成功之后，因此失败不会留下半写状态。
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable

from bitscope.core import dependency_map as depmap
from bitscope.core.bit_id import BitId
from bitscope.core.component import Component
from bitscope.core.dependency_map import DependencyMap, ResolvedDependency
from bitscope.core.exceptions import (
    BitNotInScope,
    ScopeNotFound,
    ValidationError,
    VersionNotFound,
)
from bitscope.core.remotes import DEFAULT_TIMEOUT, Archive, GlobalRemotes, Remote, Remotes
from bitscope.core.repositories import (
    SOURCES_DIRNAME,
    Cache,
    External,
    HistoryRecord,
    Source,
    Tmp,
)
from bitscope.core.scope_json import ScopeJson
from bitscope.core.version import resolve_version
from bitscope.utils.fs import load_json

if TYPE_CHECKING:
    from bitscope.core.build import Builder

logger = logging.getLogger(__name__)

# 解析结果: (组件, 来源远端别名；本地解析为 None)
Resolved = tuple[Component, "str | None"]


def path_has_scope(path: Path) -> bool:
    return (path / SOURCES_DIRNAME).is_dir()


def propagate_until(path: Path, predicate: Callable[[Path], bool]) -> Path | None:
    """从 path 开始逐级向上，返回第一个满足 predicate 的目录"""
    current = path.resolve()
    for candidate in (current, *current.parents):
        if predicate(candidate):
            return candidate
    return None


def _dedupe(resolved: Iterable[Resolved]) -> list[Resolved]:
    seen: set[str] = set()
    result: list[Resolved] = []
    for component, alias in resolved:
        key = str(component.id)
        if key in seen:
            continue
        seen.add(key)
        result.append((component, alias))
    return result


def _pins(declared: Iterable[BitId], groups: list[list[Resolved]]) -> dict[str, BitId]:
    """namespace/name -> 解析到的具体标识符；每组中最后一个同名组件即依赖本身"""
    pins: dict[str, BitId] = {}
    for dep, group in zip(declared, groups):
        matches = [c.id for c, _ in group if c.id.key == dep.key]
        if matches:
            pins[dep.key] = matches[-1]
    return pins


class Scope:
    """版本化组件仓库"""

    def __init__(
        self,
        path: Path,
        scope_json: ScopeJson | None = None,
        *,
        created: bool = False,
        dependency_map: DependencyMap | None = None,
        global_remotes: GlobalRemotes | None = None,
        builder: Builder | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        self.path = Path(path)
        self.scope_json = scope_json or ScopeJson(name=self.path.name)
        self.created = created
        self.sources = Source(self.path)
        self.external = External(self.path)
        self.tmp = Tmp(self.path)
        self.cache = Cache(self.path)
        self.dependency_map = dependency_map or DependencyMap(self.path)
        self.global_remotes = global_remotes
        self.builder = builder
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self.scope_json.name

    def describe(self) -> dict[str, Any]:
        return {"name": self.name}

    # ------------------------------------------------------------------
    # 创建 / 加载
    # ------------------------------------------------------------------

    @classmethod
    def create(cls, path: Path, name: str | None = None, **kwargs: Any) -> Scope:
        """path 或其上级已有 scope 时直接加载，否则返回未落盘的新 scope

        新 scope 需要调用方执行 ensure_dir() 才会写入磁盘。
        """
        path = Path(path)
        if propagate_until(path, path_has_scope) is not None:
            return cls.load(path, **kwargs)
        scope_json = ScopeJson(name=name or path.resolve().name)
        logger.info("新建 scope: %s (%s)", scope_json.name, path)
        return cls(path, scope_json, created=True, **kwargs)

    @classmethod
    def load(cls, path: Path, **kwargs: Any) -> Scope:
        """向上查找 scope 标记并加载依赖图与 scope.json"""
        scope_path = propagate_until(Path(path), path_has_scope)
        if scope_path is None:
            raise ScopeNotFound(str(path))
        try:
            raw_map = load_json(depmap.get_path(scope_path))
        except json.JSONDecodeError as e:
            raise ValidationError(f"{depmap.get_path(scope_path)} is not valid JSON: {e}") from e
        scope_json = ScopeJson.load(scope_path)
        if not scope_json.name:
            scope_json.name = scope_path.name
        scope = cls(scope_path, scope_json, **kwargs)
        scope.dependency_map = DependencyMap.load(raw_map, scope_path)
        logger.debug("已加载 scope: %s (%s)", scope.name, scope_path)
        return scope

    def ensure_dir(self) -> Scope:
        """幂等地创建四个存储区并写出依赖图与 scope.json"""
        self._ensure_areas()
        self.dependency_map.write()
        self.scope_json.write(self.path)
        return self

    def _ensure_areas(self) -> None:
        for area in (self.cache, self.sources, self.external, self.tmp):
            area.ensure_dir()

    # ------------------------------------------------------------------
    # 远端与历史
    # ------------------------------------------------------------------

    def remotes(self, known: Remotes | None = None) -> Remotes:
        """全局表 + 本地表（本地优先），再叠加调用方已知的远端"""
        table: dict[str, str] = {}
        if self.global_remotes is not None:
            table.update(self.global_remotes.to_dict())
        table.update(self.scope_json.remotes)
        merged = Remotes.load(table, timeout=self.timeout)
        return merged.merged(known) if known is not None else merged

    def history(self, bit_id: BitId) -> HistoryRecord | None:
        """namespace/name 的版本历史；缺失或不可读时为 None"""
        return self.cache.read(bit_id)

    def history_keys(self) -> list[BitId]:
        return self.cache.keys()

    def _localize(self, bit_id: BitId) -> BitId:
        """以本 scope 名限定的标识符视为本地标识符"""
        if bit_id.scope is not None and bit_id.scope == self.name:
            return bit_id.with_scope(None)
        return bit_id

    def _exported_id(self, bit_id: BitId) -> BitId | None:
        """本地版本已推送且源副本已删除时，返回其远端标识符"""
        record = self.history(bit_id)
        if record is None:
            return None
        version = resolve_version(bit_id, record.versions)
        exported_to = record.versions[version].exported_to
        if exported_to is None or self.sources.has(bit_id.with_version(version)):
            return None
        return BitId(bit_id.namespace, bit_id.name, version, scope=exported_to)

    # ------------------------------------------------------------------
    # put / get
    # ------------------------------------------------------------------

    async def put(self, component: Component, known: Remotes | None = None) -> list[Component]:
        """校验、拉取依赖闭包、构建，最后统一落盘

        入库的清单中每个声明的依赖都钉住为解析到的具体版本。
        返回 [拉取到的依赖..., component]。任何失败都发生在落盘之前。
        """
        component = component.with_id(self._localize(component.id))
        if not component.id.is_local() or not component.id.has_version():
            raise ValidationError(f"cannot store '{component.id}': need a local id with a version")
        component.validate()

        remotes = self.remotes(known)
        groups = await self._resolve_groups(component.dependencies, remotes)
        resolved = _dedupe(item for group in groups for item in group)
        component = component.with_pinned_dependencies(_pins(component.dependencies, groups))
        fetched = [c for c, _ in resolved]

        build_dir: Path | None = None
        workdir: Path | None = None
        try:
            if component.has_compiler():
                if self.builder is None:
                    logger.warning("%s 声明了 compiler 但未配置构建器，跳过构建", component.id)
                else:
                    workdir = self.tmp.workdir("build-")
                    build_dir = await asyncio.to_thread(self.builder.build, component, workdir)
            await asyncio.to_thread(self._store, component, resolved, build_dir)
        finally:
            if workdir is not None:
                self.tmp.remove(workdir)

        logger.info("已入库 %s (%d 个依赖)", component.id, len(fetched))
        return [*fetched, component]

    def _store(self, component: Component, resolved: list[Resolved], build_dir: Path | None) -> None:
        self._ensure_areas()
        self.external.store([c for c, _ in resolved])
        self.dependency_map.set_bit(
            component, [ResolvedDependency(c.id, alias) for c, alias in resolved],
        )
        self.sources.set_source(component, build_dir)
        record = self.history(component.id) or HistoryRecord(component.id.key)
        record.add(component.id.version or "", component.content_hash())
        self.cache.write(component.id, record)
        self.dependency_map.write()
        self.scope_json.write(self.path)

    async def get(self, bit_id: BitId, known: Remotes | None = None) -> list[Component]:
        """返回组件及其完整传递依赖集（依赖在前，组件在最后）"""
        bit_id = self._localize(bit_id)
        remotes = self.remotes(known)
        if bit_id.is_local():
            bit_id = await asyncio.to_thread(self._exported_id, bit_id) or bit_id
        if not bit_id.is_local():
            resolved = await self._get_external(bit_id, remotes.resolve(bit_id.scope))
        else:
            resolved = await self._get_local(bit_id, remotes)
        return [c for c, _ in resolved]

    async def get_one(self, bit_id: BitId) -> Component:
        """只从源存储区加载单个组件，不解析依赖"""
        return await asyncio.to_thread(self.sources.load_source, self._localize(bit_id))

    async def _get_local(self, bit_id: BitId, remotes: Remotes) -> list[Resolved]:
        record = await asyncio.to_thread(self.history, bit_id)
        version = resolve_version(bit_id, record.versions if record else [])
        bit_id = bit_id.with_version(version)

        edges = self.dependency_map.get(bit_id)
        if edges is None:
            raise BitNotInScope(str(bit_id))
        dep_remotes = DependencyMap.get_remotes(edges)
        dep_ids = DependencyMap.get_bit_ids(edges)

        resolved = await self._resolve_all(dep_ids, remotes, dep_remotes)
        component = await asyncio.to_thread(self.sources.load_source, bit_id)
        return _dedupe([*resolved, (component, None)])

    async def _get_external(self, bit_id: BitId, remote: Remote) -> list[Resolved]:
        """向远端请求闭包，解码归档并打上来源 scope"""
        archives = await remote.fetch([bit_id])
        origin = bit_id.scope
        components = await asyncio.gather(*(
            asyncio.to_thread(Component.from_archive, a.contents, origin) for a in archives
        ))
        return _dedupe((c, remote.alias) for c in components)

    async def _resolve_all(
        self,
        ids: Iterable[BitId],
        remotes: Remotes,
        aliases: dict[str, str] | None = None,
    ) -> list[Resolved]:
        """并发解析一组兄弟依赖，全部成功后扁平化去重"""
        groups = await self._resolve_groups(ids, remotes, aliases)
        return _dedupe(item for group in groups for item in group)

    async def _resolve_groups(
        self,
        ids: Iterable[BitId],
        remotes: Remotes,
        aliases: dict[str, str] | None = None,
    ) -> list[list[Resolved]]:
        """每个依赖一组解析结果，顺序与 ids 一致"""
        aliases = aliases or {}
        return list(await asyncio.gather(*(
            self._resolve_dependency(bit_id, remotes, aliases.get(str(bit_id)))
            for bit_id in ids
        )))

    async def _resolve_dependency(
        self, bit_id: BitId, remotes: Remotes, alias: str | None,
    ) -> list[Resolved]:
        bit_id = self._localize(bit_id)
        if bit_id.is_local():
            exported = await asyncio.to_thread(self._exported_id, bit_id)
            if exported is None:
                return await self._get_local(bit_id, remotes)
            logger.debug("%s 已导出到 %s，改为远端解析", bit_id, exported.scope)
            bit_id, alias = exported, None

        cached = await asyncio.to_thread(self.external.load, bit_id)
        if cached is None:
            return await self._get_external(bit_id, remotes.resolve(alias or bit_id.scope))

        logger.debug("外部依赖缓存命中: %s", bit_id)
        deps = await self._resolve_all(cached.dependencies, remotes)
        return _dedupe([*deps, (cached, alias or bit_id.scope)])

    # ------------------------------------------------------------------
    # 传输
    # ------------------------------------------------------------------

    async def fetch(self, ids: Iterable[BitId]) -> list[Archive]:
        """服务端原语：批量计算闭包，去重后编码为归档"""
        closures = await asyncio.gather(*(self.get(bit_id) for bit_id in ids))
        seen: set[str] = set()
        components: list[Component] = []
        for closure in closures:
            for component in closure:
                if str(component.id) not in seen:
                    seen.add(str(component.id))
                    components.append(component)
        payloads = await asyncio.gather(*(
            asyncio.to_thread(c.to_archive) for c in components
        ))
        return [Archive(str(c.id), data) for c, data in zip(components, payloads)]

    async def upload(self, name: str, contents: bytes) -> list[Component]:
        """接收推送：解码归档后按本地组件入库"""
        component = await asyncio.to_thread(Component.from_archive, contents)
        logger.info("接收上传: %s (%s)", name, component.id)
        return await self.put(component)

    async def push(self, bit_id: BitId, remote: Remote) -> str:
        """推送本地组件到远端，确认后删除本地副本并记录导出目标

        返回接收方 scope 名。
        """
        bit_id = self._localize(bit_id)
        component = await asyncio.to_thread(self.sources.load_source, bit_id)
        contents = await asyncio.to_thread(component.to_archive)
        staged = await asyncio.to_thread(self.tmp.stage, str(bit_id), contents)
        try:
            result = await remote.push(Archive(str(bit_id), contents))
        finally:
            self.tmp.remove(staged)

        await asyncio.to_thread(self.sources.clean, bit_id)
        record = await asyncio.to_thread(self.history, bit_id) or HistoryRecord(bit_id.key)
        record.mark_exported(bit_id.version or "", result.scope)
        await asyncio.to_thread(self.cache.write, bit_id, record)
        logger.info("已导出 %s -> %s (%s)", bit_id, remote.alias, result.scope)
        return result.scope

    async def fetch_import(self, bit_id: BitId, known: Remotes | None = None) -> list[Component]:
        """拉取待导入组件的闭包（组件在最后），不落盘"""
        bit_id = self._localize(bit_id)
        if bit_id.is_local():
            raise ValidationError(f"'{bit_id}' is local, only remote components can be imported")
        remote = self.remotes(known).resolve(bit_id.scope)
        resolved = await self._get_external(bit_id, remote)
        components = [c for c, _ in resolved]
        target = next((c for c in reversed(components) if c.id.same_component(bit_id)), None)
        if target is None or not target.id.version:
            raise VersionNotFound(str(bit_id))
        return [*(c for c in components if c is not target), target]

    def store_import(self, components: list[Component]) -> Component:
        """缓存 fetch_import 拉到的闭包，并把组件版本记为已导出"""
        target = components[-1]
        version = target.id.version or ""
        self._ensure_areas()
        self.external.store(components)
        record = self.history(target.id) or HistoryRecord(target.id.key)
        record.add(version, target.content_hash())
        record.mark_exported(version, target.id.scope or "")
        self.cache.write(target.id, record)
        self.scope_json.write(self.path)
        self.dependency_map.write()
        logger.info("已导入 %s", target.id)
        return target

    # ------------------------------------------------------------------
    # 维护
    # ------------------------------------------------------------------

    def remove_version(self, bit_id: BitId) -> None:
        """撤销一个暂存版本（untag）；已导出的版本不可撤销"""
        bit_id = self._localize(bit_id)
        record = self.history(bit_id)
        if record is None or not bit_id.has_version() or not record.has(bit_id.version):
            raise VersionNotFound(str(bit_id))
        version = bit_id.version or ""
        if record.is_exported(version):
            raise ValidationError(f"'{bit_id}' was already exported and cannot be untagged")

        self.sources.clean(bit_id)
        self.dependency_map.remove(bit_id)
        del record.versions[version]
        self.cache.write(bit_id, record)
        self.dependency_map.write()
        logger.info("已撤销版本 %s", bit_id)

    async def list_sources(self) -> list[Component]:
        """加载源存储区中的全部组件版本"""
        ids = list(self.sources.walk())
        return list(await asyncio.gather(*(
            asyncio.to_thread(self.sources.load_source, bit_id) for bit_id in ids
        )))
