"""依赖图

scope 拥有的 “组件@版本 -> 依赖边集” 映射，整体持久化为 dependencies.json:

    {
      "ns/name@0.0.1": {
        "dependencies": ["ns/util@0.0.1", "other/ns/lib@1.0.0"],
        "remotes": {"other/ns/lib@1.0.0": "other"}
      }
    }

每次 write() 都整文件重写，不做增量。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

from bitscope.core.bit_id import BitId, dedupe
from bitscope.utils.fs import save_json

if TYPE_CHECKING:
    from bitscope.core.component import Component

logger = logging.getLogger(__name__)

DEPENDENCIES_FILE = "dependencies.json"


def get_path(scope_path: Path) -> Path:
    return scope_path / DEPENDENCIES_FILE


@dataclass(frozen=True)
class ResolvedDependency:
    """put 时解析出的一个依赖，remote 为其来源远端别名（本地解析为 None）"""

    id: BitId
    remote: str | None = None


@dataclass
class Edges:
    """单个组件版本的依赖边集"""

    dependencies: list[BitId] = field(default_factory=list)
    remotes: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dependencies": sorted(str(d) for d in self.dependencies),
            "remotes": dict(sorted(self.remotes.items())),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edges:
        return cls(
            dependencies=[BitId.parse(raw) for raw in data.get("dependencies") or []],
            remotes=dict(data.get("remotes") or {}),
        )


class DependencyMap:
    """依赖图（内存中修改，write() 时整体落盘）"""

    def __init__(self, scope_path: Path, entries: dict[str, Edges] | None = None) -> None:
        self.scope_path = scope_path
        self._entries: dict[str, Edges] = entries or {}

    def __contains__(self, bit_id: object) -> bool:
        return str(bit_id) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def set_bit(self, component: Component, resolved: Iterable[ResolvedDependency]) -> Edges:
        """记录组件入库时的依赖边集"""
        items = list(resolved)
        edges = Edges(
            dependencies=dedupe(r.id for r in items),
            remotes={str(r.id): r.remote for r in items if r.remote},
        )
        self._entries[str(component.id)] = edges
        logger.debug("依赖边已记录: %s -> %d 个依赖", component.id, len(edges.dependencies))
        return edges

    def get(self, bit_id: BitId) -> Edges | None:
        """返回依赖边集；None 表示该标识符不归本 scope 所有"""
        return self._entries.get(str(bit_id))

    def remove(self, bit_id: BitId) -> bool:
        return self._entries.pop(str(bit_id), None) is not None

    @staticmethod
    def get_remotes(edges: Edges) -> dict[str, str]:
        """依赖标识符 -> 远端别名"""
        return dict(edges.remotes)

    @staticmethod
    def get_bit_ids(edges: Edges) -> list[BitId]:
        return list(edges.dependencies)

    def to_dict(self) -> dict[str, Any]:
        return {key: edges.to_dict() for key, edges in sorted(self._entries.items())}

    def write(self) -> None:
        save_json(get_path(self.scope_path), self.to_dict())

    @classmethod
    def load(cls, raw: dict[str, Any] | None, scope_path: Path) -> DependencyMap:
        """从已解析的 JSON 重建；空内容（新 scope）得到空图"""
        entries = {key: Edges.from_dict(value or {}) for key, value in (raw or {}).items()}
        return cls(scope_path, entries)
