"""版本解析器

版本号严格为 MAJOR.MINOR.PATCH，排序交给 packaging.version.Version。
历史（history）是同一 namespace/name 下已打标签的版本集合，互不重复，
因此比较是全序且确定的。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from packaging.version import Version

from bitscope.core.bit_id import LATEST, BitId
from bitscope.core.exceptions import ComponentNotFound, ValidationError, VersionNotFound

INITIAL_VERSION = "0.0.1"

_SEMVER_RE = re.compile(r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)$")


class BumpKind(str, Enum):
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    EXPLICIT = "explicit"


@dataclass(frozen=True)
class Bump:
    """版本递增方式；EXPLICIT 时 exact 为目标版本"""

    kind: BumpKind = BumpKind.PATCH
    exact: str | None = None

    @classmethod
    def explicit(cls, version: str) -> Bump:
        return cls(BumpKind.EXPLICIT, parse_version(version).base_version)


def parse_version(raw: str) -> Version:
    """解析语义化版本号，非 X.Y.Z 形式抛 ValidationError"""
    if not isinstance(raw, str) or not _SEMVER_RE.match(raw):
        raise ValidationError(f"invalid semantic version '{raw}'")
    return Version(raw)


def is_semver(raw: str) -> bool:
    return isinstance(raw, str) and bool(_SEMVER_RE.match(raw))


def max_version(history: Iterable[str]) -> str | None:
    """历史中的最大版本，空历史返回 None"""
    versions = [parse_version(v) for v in history]
    if not versions:
        return None
    return str(max(versions))


def resolve_version(bit_id: BitId, history: Iterable[str]) -> str:
    """把标识符的版本解析为历史中的具体版本

    - latest / 未指定: 返回历史最大版本，空历史抛 ComponentNotFound
    - 显式版本: 必须在历史中，否则抛 VersionNotFound
    """
    known = list(history)
    if not bit_id.version or bit_id.version == LATEST:
        latest = max_version(known)
        if latest is None:
            raise ComponentNotFound(bit_id.to_string(with_version=False))
        return latest

    wanted = parse_version(bit_id.version)
    for v in known:
        if parse_version(v) == wanted:
            return v
    raise VersionNotFound(str(bit_id))


def next_version(history: Iterable[str], bump: Bump | None = None) -> str:
    """计算下一个版本号，结果严格大于历史最大版本

    空历史时 major/minor/patch 一律返回 INITIAL_VERSION，
    EXPLICIT 返回指定版本本身。
    """
    bump = bump or Bump()
    current = max_version(history)

    if bump.kind == BumpKind.EXPLICIT:
        if bump.exact is None:
            raise ValidationError("explicit bump requires a version")
        target = parse_version(bump.exact)
        if current is not None and target <= Version(current):
            raise ValidationError(
                f"version {bump.exact} must be greater than current {current}"
            )
        return str(target)

    if current is None:
        return INITIAL_VERSION

    v = Version(current)
    if bump.kind == BumpKind.MAJOR:
        return f"{v.major + 1}.0.0"
    if bump.kind == BumpKind.MINOR:
        return f"{v.major}.{v.minor + 1}.0"
    return f"{v.major}.{v.minor}.{v.micro + 1}"
