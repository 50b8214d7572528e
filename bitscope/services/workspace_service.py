"""工作区服务: add / status / tag / export / show / untag / import

工作区根目录是最近一个含有 .bitmap 或 .bitscope/ 的上级目录，本地 scope 位于
<root>/.bitscope。该目录被删除时按未落盘的空 scope 处理，直到某次变更成功才写盘。

所有变更操作先对账（见 reconcile.py），失败时 .bitmap 不会被改写。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

from bitscope.core.bit_id import BitId
from bitscope.core.bit_map import BIT_MAP, BitMap, BitMapEntry
from bitscope.core.component import Component
from bitscope.core.exceptions import (
    IMPORT_PENDING_MSG,
    ComponentNotFound,
    ImportPending,
    MissingWorkspaceComponent,
    RemoteNotFound,
    ScopeNotFound,
    ValidationError,
)
from bitscope.core.remotes import DEFAULT_TIMEOUT, GlobalRemotes, Remote
from bitscope.core.scope import Scope, path_has_scope, propagate_until
from bitscope.core.scope_json import ScopeJson
from bitscope.core.version import Bump, next_version
from bitscope.services.reconcile import ComponentState, ComponentStatus, Reconciler, StatusReport

logger = logging.getLogger(__name__)

WORKSPACE_SCOPE_DIR = ".bitscope"
STATUS_CLEAN_MSG = "nothing to tag or export"
NO_LOCAL_CHANGES_MSG = (
    "no local changes have been made because the components are not tracked"
)

_TAGGABLE = (ComponentState.NEW, ComponentState.MODIFIED)


def find_workspace_root(path: Path) -> Path | None:
    return propagate_until(
        Path(path),
        lambda p: (p / BIT_MAP).is_file() or (p / WORKSPACE_SCOPE_DIR).is_dir(),
    )


def _dependency_order(components: dict[str, Component]) -> list[Component]:
    """按工作区内部的本地依赖排序，被依赖者在前"""
    ordered: list[Component] = []
    done: set[str] = set()
    visiting: set[str] = set()

    def visit(key: str) -> None:
        if key in done:
            return
        if key in visiting:
            raise ValidationError(f"circular dependency involving '{key}'")
        visiting.add(key)
        for dep in components[key].dependencies:
            if dep.is_local() and dep.key in components:
                visit(dep.key)
        visiting.discard(key)
        done.add(key)
        ordered.append(components[key])

    for key in sorted(components):
        visit(key)
    return ordered


@dataclass
class TagReport:
    tagged: list[BitId] = field(default_factory=list)
    skipped: list[BitId] = field(default_factory=list)


@dataclass
class ExportReport:
    remote: str
    exported: list[BitId] = field(default_factory=list)
    untracked: list[BitId] = field(default_factory=list)

    @property
    def message(self) -> str:
        keys = {i.key for i in self.exported}
        text = f"exported {len(keys)} components to scope {self.remote}"
        if self.untracked:
            text += f"\n{NO_LOCAL_CHANGES_MSG}"
        return text


def render_status(report: StatusReport) -> str:
    """状态报告文本（CLI 与测试共用）"""
    if report.is_clean():
        return STATUS_CLEAN_MSG
    sections = [
        ("new components", ComponentState.NEW, False),
        ("modified components", ComponentState.MODIFIED, True),
        ("staged components", ComponentState.STAGED, True),
        ("missing components", ComponentState.MISSING, False),
    ]
    lines: list[str] = []
    for title, state, with_version in sections:
        items = report.by_state(state)
        if not items:
            continue
        lines.append(title)
        for status in items:
            text = status.id.to_string(with_version=with_version)
            if state == ComponentState.STAGED and not status.tracked:
                text += " (not tracked by the workspace)"
            lines.append(f"     > {text}")
        lines.append("")

    pending = report.import_pending
    if pending:
        lines.append(IMPORT_PENDING_MSG)
        lines.extend(f"     > {s.id}" for s in pending)
        lines.append("")
    return "\n".join(lines).rstrip("\n")


class WorkspaceService:
    """工作区生命周期管理"""

    def __init__(
        self,
        root: str | Path,
        *,
        global_remotes: GlobalRemotes | None = None,
        builder: Any = None,
        timeout: int = DEFAULT_TIMEOUT,
        default_remote: str | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.default_remote = default_remote
        self._scope_kwargs: dict[str, Any] = {
            "global_remotes": global_remotes,
            "builder": builder,
            "timeout": timeout,
        }
        self.bit_map = BitMap.load(self.root)
        self.scope = self._open_scope()

    @classmethod
    def discover(cls, path: str | Path, **kwargs: Any) -> WorkspaceService:
        root = find_workspace_root(Path(path))
        if root is None:
            raise ScopeNotFound(f"no workspace at or above {path}")
        return cls(root, **kwargs)

    @classmethod
    def init(cls, path: str | Path, **kwargs: Any) -> WorkspaceService:
        """初始化工作区：落盘 .bitscope/ 与空 .bitmap（幂等）"""
        root = Path(path)
        root.mkdir(parents=True, exist_ok=True)
        svc = cls(root, **kwargs)
        svc.scope.ensure_dir()
        svc.bit_map.write()
        logger.info("工作区已初始化: %s", svc.root)
        return svc

    def _open_scope(self) -> Scope:
        scope_path = self.root / WORKSPACE_SCOPE_DIR
        if path_has_scope(scope_path):
            return Scope.load(scope_path, **self._scope_kwargs)
        if self.bit_map.entries():
            logger.warning("工作区 scope 不存在，按空 scope 处理: %s", scope_path)
        return Scope(
            scope_path, ScopeJson(name=self.root.name), created=True, **self._scope_kwargs,
        )

    def _reconcile(self) -> StatusReport:
        return Reconciler(self.scope, self.bit_map).reconcile()

    def _component_dir(self, entry: BitMapEntry) -> Path:
        return self.root / entry.root

    def _relative_root(self, root: str | Path) -> str:
        path = Path(root)
        if path.is_absolute():
            try:
                path = path.resolve().relative_to(self.root)
            except ValueError as e:
                raise ValidationError(f"'{root}' is outside the workspace {self.root}") from e
        rel = PurePosixPath(path.as_posix())
        if not rel.parts or ".." in rel.parts:
            raise ValidationError(f"illegal component root '{root}'")
        return str(rel)

    # ---- add / status / show ----

    def add(self, root: str | Path, bit_id: str | None = None) -> BitMapEntry:
        """跟踪组件目录；未指定 id 时取目录的最后两级作为 namespace/name"""
        rel = self._relative_root(root)
        path = self.root / rel
        if not path.is_dir():
            raise ValidationError(f"'{rel}' is not a directory")
        if bit_id:
            parsed = BitId.parse(bit_id)
        else:
            parts = PurePosixPath(rel).parts
            if len(parts) < 2:
                raise ValidationError(f"cannot derive namespace/name from '{rel}', pass an id")
            parsed = BitId(parts[-2], parts[-1])
        parsed = BitId(parsed.namespace, parsed.name)

        component = Component.from_dir(path, parsed)
        component.validate()
        entry = self.bit_map.add(rel, parsed, sorted(component.files()))
        self.bit_map.write()
        logger.info("已跟踪 %s -> %s", rel, parsed)
        return entry

    def status(self) -> StatusReport:
        """对账并落盘 .bitmap；importPending 只报告不抛错"""
        report = self._reconcile()
        self.bit_map.write()
        return report

    def show(self, bit_id: str) -> dict[str, Any]:
        """描述工作区跟踪的组件；带版本且该版本在源存储区时描述存储的版本"""
        wanted = BitId.parse(bit_id)
        entry = self.bit_map.find(wanted)
        if entry is None:
            raise MissingWorkspaceComponent(wanted.key)
        report = self._reconcile()
        status = report.find(entry.id)
        state = status.state if status else ComponentState.NEW

        if state == ComponentState.IMPORT_PENDING:
            return {"id": str(entry.id), "state": state.value, "exported": entry.exported}

        local = wanted.with_scope(None)
        if local.has_version() and self.scope.sources.has(local):
            component = asyncio.run(self.scope.get_one(local))
        else:
            component = Component.from_dir(self._component_dir(entry), entry.id)
        info = component.describe()
        info["state"] = state.value
        info["exported"] = entry.exported
        info["root"] = entry.root
        return info

    # ---- tag / untag ----

    def tag(
        self,
        bit_id: str | None = None,
        *,
        all_components: bool = False,
        bump: Bump | None = None,
        force: bool = False,
    ) -> TagReport:
        """打版本：基准版本取自 scope 历史，与工作区记录无关"""
        if not bit_id and not all_components:
            raise ValidationError("specify a component id or --all")
        report = self._reconcile()

        if all_components:
            if report.import_pending:
                raise ImportPending(", ".join(str(s.id) for s in report.import_pending))
            candidates = [s for s in report.components if s.tracked]
        else:
            wanted = BitId.parse(bit_id or "")
            entry = self.bit_map.find(wanted)
            if entry is None:
                raise MissingWorkspaceComponent(wanted.key)
            status = report.find(entry.id)
            if status is None:
                raise MissingWorkspaceComponent(wanted.key)
            if status.state == ComponentState.IMPORT_PENDING:
                raise ImportPending(str(status.id))
            candidates = [status]

        result = TagReport()
        targets: list[ComponentStatus] = []
        for status in candidates:
            if status.state == ComponentState.MISSING:
                if not all_components:
                    raise ValidationError(f"'{status.entry.root}' no longer exists")
                result.skipped.append(status.id)
            elif status.state in _TAGGABLE or force:
                targets.append(status)
            else:
                result.skipped.append(status.id)

        if targets:
            result.tagged = asyncio.run(self._tag_all(targets, bump))
            self.scope.ensure_dir()
        self.bit_map.write()
        return result

    async def _tag_all(self, targets: list[ComponentStatus], bump: Bump | None) -> list[BitId]:
        components: dict[str, Component] = {}
        for status in targets:
            if status.entry is None:
                continue
            local = BitId(status.id.namespace, status.id.name)
            components[local.key] = Component.from_dir(self._component_dir(status.entry), local)

        tagged: list[BitId] = []
        for component in _dependency_order(components):
            record = self.scope.history(component.id)
            version = next_version(record.versions if record else [], bump)
            stored = component.with_id(component.id.with_version(version))
            await self.scope.put(stored)

            entry = self.bit_map.find(stored.id)
            if entry is not None:
                entry.id = stored.id
                entry.exported = False
                entry.files = sorted(stored.files())
            tagged.append(stored.id)
            logger.info("已打版本 %s", stored.id)
        return tagged

    def untag(self, bit_id: str) -> BitId:
        """撤销暂存版本；未指定版本时撤销最新的暂存版本"""
        wanted = BitId.parse(bit_id).with_scope(None)
        if not wanted.has_version():
            record = self.scope.history(wanted)
            staged = record.staged_versions() if record else []
            if not staged:
                raise ComponentNotFound(f"{wanted.key} has no staged versions")
            wanted = wanted.with_version(staged[-1])
        self.scope.remove_version(wanted)
        self._reconcile()
        self.bit_map.write()
        return wanted

    # ---- export / import ----

    def _resolve_remote(self, alias: str | None) -> Remote:
        remotes = self.scope.remotes()
        alias = alias or self.default_remote
        if alias is None and len(remotes) == 1:
            return next(iter(remotes))
        if alias is None:
            raise RemoteNotFound("no remote given and no default remote configured")
        return remotes.resolve(alias)

    def export(
        self,
        bit_id: str | None = None,
        *,
        all_components: bool = False,
        remote: str | None = None,
    ) -> ExportReport:
        """推送暂存版本到远端，并把跟踪条目改写为远端限定的已导出 id

        单个组件导出时，其仍处于暂存状态的本地依赖会按依赖顺序一并推送。
        """
        if not bit_id and not all_components:
            raise ValidationError("specify a component id or --all")
        report = self._reconcile()

        if all_components:
            if report.import_pending:
                raise ImportPending(", ".join(str(s.id) for s in report.import_pending))
            keys = [s.id for s in report.components if s.staged_versions]
        else:
            wanted = BitId.parse(bit_id or "")
            status = report.find(wanted)
            if status is not None and status.state == ComponentState.IMPORT_PENDING:
                raise ImportPending(str(status.id))
            record = self.scope.history(wanted)
            if record is None:
                raise ComponentNotFound(wanted.key)
            keys = [wanted]

        target_remote = self._resolve_remote(remote)
        result = asyncio.run(self._export_all(keys, target_remote))
        self._reconcile()
        self.bit_map.write()
        return result

    async def _staged_latest(self, key: BitId) -> Component | None:
        """最新的暂存版本；key 带版本时该版本必须仍处于暂存状态"""
        record = await asyncio.to_thread(self.scope.history, key)
        staged = record.staged_versions() if record else []
        if not staged or (key.version and key.version not in staged):
            return None
        return await self.scope.get_one(BitId(key.namespace, key.name, staged[-1]))

    async def _export_all(self, keys: list[BitId], remote: Remote) -> ExportReport:
        result = ExportReport(remote=remote.alias)
        latest: dict[str, Component] = {}
        pending = [k.without_version() for k in keys]
        while pending:
            key = pending.pop()
            if key.key in latest:
                continue
            component = await self._staged_latest(key)
            if component is None:
                continue
            latest[key.key] = component
            # 钉住的本地依赖说明其版本尚未导出
            pending.extend(d for d in component.dependencies if d.is_local())

        for component in _dependency_order(latest):
            record = await asyncio.to_thread(self.scope.history, component.id)
            staged = record.staged_versions() if record else []
            scope_name = remote.alias
            for version in staged:
                scope_name = await self.scope.push(component.id.with_version(version), remote)
            exported = BitId(
                component.id.namespace, component.id.name, component.id.version, scope=scope_name,
            )
            result.exported.append(exported)
            if self.bit_map.find(exported) is None:
                result.untracked.append(exported)
            result.remote = scope_name
        return result

    def import_components(self, bit_ids: list[str] | None = None) -> list[BitId]:
        """从远端导入组件；不指定 id 时导入全部 importPending 条目"""
        if bit_ids:
            targets = [BitId.parse(raw) for raw in bit_ids]
        else:
            targets = [s.id for s in self._reconcile().import_pending]
        if not targets:
            return []
        imported = asyncio.run(self._import_all(targets))
        self._reconcile()
        self.bit_map.write()
        return imported

    async def _import_all(self, targets: list[BitId]) -> list[BitId]:
        """先拉取全部闭包，全部成功后再逐个落盘"""
        closures = await asyncio.gather(*(self.scope.fetch_import(t) for t in targets))
        imported: list[BitId] = []
        for components in closures:
            main = await asyncio.to_thread(self.scope.store_import, components)
            imported.append(main.id)
        return imported
