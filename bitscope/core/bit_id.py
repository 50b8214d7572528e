"""组件标识符

字符串形式: scope/namespace/name@version
  - 本地标识符没有 scope 段: namespace/name@version
  - "@this/namespace/name" 显式表示本地
  - version 可省略，或为 "latest"
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterable

from bitscope.core.exceptions import ValidationError

LATEST = "latest"
LOCAL_SCOPE_MARK = "@this"

_SEGMENT_RE = re.compile(r"^[a-zA-Z0-9_.\-]+$")


@dataclass(frozen=True)
class BitId:
    """不可变组件标识符"""

    namespace: str
    name: str
    version: str | None = None
    scope: str | None = None

    @classmethod
    def parse(cls, raw: str) -> BitId:
        """解析标识符字符串，格式非法时抛 ValidationError"""
        text = (raw or "").strip()
        if not text:
            raise ValidationError("empty component id")

        version: str | None = None
        if "@" in text[1:]:
            head, _, version = text.rpartition("@")
            if not version:
                raise ValidationError(f"empty version in id '{raw}'")
            text = head

        parts = text.split("/")
        scope: str | None = None
        if len(parts) == 3:
            scope = None if parts[0] == LOCAL_SCOPE_MARK else parts[0]
            parts = parts[1:]
        if len(parts) != 2:
            raise ValidationError(f"malformed component id '{raw}'")

        namespace, name = parts
        for seg in (scope, namespace, name):
            if seg is not None and not _SEGMENT_RE.match(seg):
                raise ValidationError(f"illegal characters in id '{raw}'")
        return cls(namespace=namespace, name=name, version=version, scope=scope)

    # ------------------------------------------------------------------
    # 属性
    # ------------------------------------------------------------------

    @property
    def key(self) -> str:
        """namespace/name，历史记录和对账都以它为单位"""
        return f"{self.namespace}/{self.name}"

    def is_local(self) -> bool:
        return self.scope is None

    def has_version(self) -> bool:
        return bool(self.version) and self.version != LATEST

    def same_component(self, other: BitId) -> bool:
        """忽略版本比较是否同一组件"""
        return self.to_string(with_version=False) == other.to_string(with_version=False)

    # ------------------------------------------------------------------
    # 派生
    # ------------------------------------------------------------------

    def with_version(self, version: str | None) -> BitId:
        return replace(self, version=version)

    def with_scope(self, scope: str | None) -> BitId:
        return replace(self, scope=scope)

    def without_version(self) -> BitId:
        return replace(self, version=None)

    def qualify(self, scope_name: str) -> BitId:
        """本地标识符补上来源 scope，已有 scope 的保持不变"""
        if self.scope is not None:
            return self
        return replace(self, scope=scope_name)

    def to_string(self, *, with_version: bool = True) -> str:
        base = self.key if self.scope is None else f"{self.scope}/{self.key}"
        if with_version and self.version:
            return f"{base}@{self.version}"
        return base

    def __str__(self) -> str:
        return self.to_string()


def dedupe(ids: Iterable[BitId]) -> list[BitId]:
    """按字符串形式去重，保持首次出现顺序"""
    seen: set[str] = set()
    result: list[BitId] = []
    for bit_id in ids:
        text = str(bit_id)
        if text in seen:
            continue
        seen.add(text)
        result.append(bit_id)
    return result
