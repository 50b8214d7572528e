"""工作区跟踪文件 .bitmap

    {
      "bar/foo": {"id": "bar/foo@0.0.1", "exported": false, "files": ["impl.py"]}
    }

键是组件在工作区中的根目录（相对路径，默认为 namespace/name）。
.bitmap 只表达“意图”，真实版本以 scope 历史为准，由对账引擎持续改写。
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bitscope.core.bit_id import BitId
from bitscope.core.exceptions import ValidationError
from bitscope.utils.fs import atomic_write, dump_json

logger = logging.getLogger(__name__)

BIT_MAP = ".bitmap"


@dataclass
class BitMapEntry:
    root: str
    id: BitId
    exported: bool = False
    files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"id": str(self.id), "exported": self.exported, "files": sorted(self.files)}

    @classmethod
    def from_dict(cls, root: str, data: dict[str, Any]) -> BitMapEntry:
        if not isinstance(data, dict) or "id" not in data:
            raise ValidationError(f"{BIT_MAP} entry '{root}' has no id")
        return cls(
            root=root,
            id=BitId.parse(data["id"]),
            exported=bool(data.get("exported", False)),
            files=list(data.get("files") or []),
        )


class BitMap:
    """工作区跟踪映射（内存修改，write() 落盘）"""

    def __init__(self, workspace_root: Path, entries: dict[str, BitMapEntry] | None = None) -> None:
        self.workspace_root = workspace_root
        self._entries: dict[str, BitMapEntry] = entries or {}

    @property
    def path(self) -> Path:
        return self.workspace_root / BIT_MAP

    @classmethod
    def load(cls, workspace_root: Path) -> BitMap:
        path = workspace_root / BIT_MAP
        if not path.exists():
            return cls(workspace_root)
        raw = path.read_text(encoding="utf-8")
        if not raw.strip():
            return cls(workspace_root)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"{path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError(f"{path} must contain an object")
        entries = {root: BitMapEntry.from_dict(root, value) for root, value in data.items()}
        return cls(workspace_root, entries)

    def entries(self) -> list[BitMapEntry]:
        return [self._entries[root] for root in sorted(self._entries)]

    def get(self, root: str) -> BitMapEntry | None:
        return self._entries.get(root)

    def find(self, bit_id: BitId) -> BitMapEntry | None:
        """按 namespace/name 查找条目（忽略 scope 与版本）"""
        for entry in self.entries():
            if entry.id.key == bit_id.key:
                return entry
        return None

    def add(self, root: str, bit_id: BitId, files: list[str]) -> BitMapEntry:
        """跟踪组件目录；同一组件已在其它根目录跟踪时报错"""
        existing = self.find(bit_id)
        if existing is not None and existing.root != root:
            raise ValidationError(f"'{bit_id.key}' is already tracked at '{existing.root}'")
        previous = self._entries.get(root)
        if previous is not None and previous.id.key != bit_id.key:
            raise ValidationError(f"'{root}' already tracks '{previous.id.key}'")
        entry = BitMapEntry(root=root, id=bit_id, files=list(files))
        if previous is not None:
            entry.id = previous.id
            entry.exported = previous.exported
        self._entries[root] = entry
        return entry

    def to_dict(self) -> dict[str, Any]:
        return {root: self._entries[root].to_dict() for root in sorted(self._entries)}

    def dumps(self) -> str:
        return dump_json(self.to_dict())

    def write(self) -> bool:
        """落盘；内容未变化时不重写文件，返回是否写入"""
        content = self.dumps()
        if self.path.exists() and self.path.read_text(encoding="utf-8") == content:
            return False
        atomic_write(self.path, content)
        logger.debug("已写入 %s", self.path)
        return True
