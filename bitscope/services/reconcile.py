"""工作区对账引擎

把 .bitmap（意图）与 scope 的版本历史（事实）对齐。候选集合为工作区跟踪的组件
加上 scope 中已暂存但工作区未跟踪的组件，每个候选恰好归入一种状态:

  1. scope 对该 namespace/name 没有任何历史           -> new（丢弃条目中的旧版本）
  2. 有历史但条目版本不在其中（孤儿版本）             -> 对齐到历史最大版本后按导出状态分类
  3. 条目标记 exported，但 scope 元数据缺失/不可读    -> importPending（不猜测，拒绝修改）
  4. scope 有暂存版本而工作区没有跟踪                 -> staged（仅用于报告）
  5. 其余情况按历史最大版本及其推送记录               -> staged / exported

跟踪中的组件若根目录不存在则为 missing，文件内容与历史记录哈希不一致则为 modified。
对账只修改内存中的 BitMap，是否落盘由调用方决定；同一输入重复对账结果完全一致。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from bitscope.core.bit_id import BitId
from bitscope.core.bit_map import BitMap, BitMapEntry
from bitscope.core.component import Component
from bitscope.core.exceptions import ValidationError
from bitscope.core.repositories import HistoryRecord
from bitscope.core.scope import Scope

logger = logging.getLogger(__name__)


class ComponentState(str, Enum):
    NEW = "new"
    STAGED = "staged"
    EXPORTED = "exported"
    MODIFIED = "modified"
    MISSING = "missing"
    IMPORT_PENDING = "importPending"


@dataclass
class ComponentStatus:
    """单个候选组件的对账结果"""

    id: BitId
    state: ComponentState
    entry: BitMapEntry | None = None
    staged_versions: list[str] = field(default_factory=list)

    @property
    def tracked(self) -> bool:
        return self.entry is not None


@dataclass
class StatusReport:
    components: list[ComponentStatus] = field(default_factory=list)

    def by_state(self, state: ComponentState) -> list[ComponentStatus]:
        return [c for c in self.components if c.state == state]

    def find(self, bit_id: BitId) -> ComponentStatus | None:
        for status in self.components:
            if status.id.key == bit_id.key:
                return status
        return None

    @property
    def import_pending(self) -> list[ComponentStatus]:
        return self.by_state(ComponentState.IMPORT_PENDING)

    def is_clean(self) -> bool:
        """全部组件都已导出（没有任何待处理项）"""
        return all(c.state == ComponentState.EXPORTED for c in self.components)


class Reconciler:
    """对账器：以 scope 历史为准改写 BitMap 条目"""

    def __init__(self, scope: Scope, bit_map: BitMap) -> None:
        self.scope = scope
        self.bit_map = bit_map

    @property
    def workspace_root(self) -> Path:
        return self.bit_map.workspace_root

    def reconcile(self) -> StatusReport:
        report = StatusReport()
        tracked_keys: set[str] = set()
        for entry in self.bit_map.entries():
            tracked_keys.add(entry.id.key)
            report.components.append(self.classify(entry))

        for key_id in self.scope.history_keys():
            if key_id.key in tracked_keys:
                continue
            status = self._untracked(key_id)
            if status is not None:
                report.components.append(status)
        return report

    def classify(self, entry: BitMapEntry) -> ComponentStatus:
        """对单个跟踪条目分类，并就地对齐条目的版本与导出标记"""
        record = self.scope.history(entry.id)

        if record is None:
            if entry.exported:
                logger.warning("%s 已导出但 scope 元数据缺失，需要 import", entry.id)
                return ComponentStatus(entry.id, ComponentState.IMPORT_PENDING, entry)
            if entry.id.version:
                logger.info("scope 中没有 %s 的历史，按新组件处理", entry.id)
            entry.id = entry.id.without_version().with_scope(None)
            entry.exported = False
            state = ComponentState.NEW if self._root_exists(entry) else ComponentState.MISSING
            return ComponentStatus(entry.id, state, entry)

        latest = record.latest() or ""
        if not record.has(entry.id.version):
            if entry.id.version:
                logger.info("%s 的版本不在 scope 历史中，对齐到 %s", entry.id, latest)
        exported_to = record.versions[latest].exported_to
        entry.id = BitId(
            namespace=entry.id.namespace, name=entry.id.name,
            version=latest, scope=exported_to,
        )
        entry.exported = exported_to is not None
        staged = record.staged_versions()

        if not self._root_exists(entry):
            return ComponentStatus(entry.id, ComponentState.MISSING, entry, staged)
        if self._is_modified(entry, record, latest):
            return ComponentStatus(entry.id, ComponentState.MODIFIED, entry, staged)
        state = ComponentState.EXPORTED if entry.exported else ComponentState.STAGED
        if state == ComponentState.EXPORTED and staged:
            state = ComponentState.STAGED
        return ComponentStatus(entry.id, state, entry, staged)

    def _untracked(self, key_id: BitId) -> ComponentStatus | None:
        record = self.scope.history(key_id)
        if record is None:
            return None
        staged = record.staged_versions()
        if not staged:
            return None
        return ComponentStatus(key_id.with_version(staged[-1]), ComponentState.STAGED, None, staged)

    def _root_exists(self, entry: BitMapEntry) -> bool:
        return (self.workspace_root / entry.root).is_dir()

    def _is_modified(self, entry: BitMapEntry, record: HistoryRecord, version: str) -> bool:
        expected = record.versions[version].hash
        if not expected:
            return False
        try:
            component = Component.from_dir(self.workspace_root / entry.root, entry.id)
            actual = component.content_hash()
        except ValidationError as e:
            logger.warning("无法读取工作区组件 %s: %s", entry.root, e)
            return True
        return actual != expected
