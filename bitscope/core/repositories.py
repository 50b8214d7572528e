"""scope 的四个存储区

    sources/   持久源存储: sources/<namespace>/<name>/<version>/
    external/  外部依赖缓存: external/<scope>/<namespace>/<name>/<version>/
    tmp/       临时暂存区: 归档暂存、构建工作目录
    cache/     元数据缓存: cache/<namespace>/<name>.json 版本历史记录

源存储区的 sources/ 目录同时是 scope 的标记。
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator

from packaging.version import Version

from bitscope.core.bit_id import BitId
from bitscope.core.component import DIST_DIR, Component
from bitscope.core.exceptions import MissingComponent
from bitscope.core.version import is_semver, max_version
from bitscope.utils.fs import load_json, save_json

logger = logging.getLogger(__name__)

SOURCES_DIRNAME = "sources"
EXTERNAL_DIRNAME = "external"
TMP_DIRNAME = "tmp"
CACHE_DIRNAME = "cache"


def _visible_dirs(path: Path) -> list[Path]:
    if not path.is_dir():
        return []
    return sorted(p for p in path.iterdir() if p.is_dir() and not p.name.startswith("."))


def _prune_empty(path: Path, stop: Path) -> None:
    """自下而上删除空目录，直到 stop（不含）"""
    current = path
    while current != stop and current.is_dir() and not any(current.iterdir()):
        current.rmdir()
        current = current.parent


class Repository:
    """存储区基类"""

    dirname: str = ""

    def __init__(self, scope_path: Path) -> None:
        self.scope_path = scope_path

    def get_path(self) -> Path:
        return self.scope_path / self.dirname

    def ensure_dir(self) -> None:
        self.get_path().mkdir(parents=True, exist_ok=True)

    def exists(self) -> bool:
        return self.get_path().is_dir()


# =========================================================================
# 源存储区
# =========================================================================


class SourceWalk:
    """源存储区遍历：惰性、有限、可重复迭代的标识符序列

    每次 iter() 都重新扫描 sources/<namespace>/<name>/<version> 三级目录。
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def __iter__(self) -> Iterator[BitId]:
        for ns_dir in _visible_dirs(self.root):
            for name_dir in _visible_dirs(ns_dir):
                versions = [d.name for d in _visible_dirs(name_dir) if is_semver(d.name)]
                for version in sorted(versions, key=Version):
                    yield BitId(namespace=ns_dir.name, name=name_dir.name, version=version)


class Source(Repository):
    """持久源存储区"""

    dirname = SOURCES_DIRNAME

    def component_path(self, bit_id: BitId) -> Path:
        return self.get_path() / bit_id.namespace / bit_id.name / (bit_id.version or "")

    def has(self, bit_id: BitId) -> bool:
        return bool(bit_id.version) and self.component_path(bit_id).is_dir()

    def set_source(self, component: Component, build_dir: Path | None = None) -> Path:
        """写入组件版本目录；先写到同级临时目录再整体替换"""
        dest = self.component_path(component.id)
        dest.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(dir=str(dest.parent), prefix=".staging-"))
        try:
            component.write_to(staging)
            if build_dir is not None and build_dir.is_dir():
                shutil.copytree(build_dir, staging / DIST_DIR)
            if dest.exists():
                shutil.rmtree(dest)
            staging.rename(dest)
        except Exception:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        logger.info("源存储写入: %s -> %s", component.id, dest)
        return dest

    def load_source(self, bit_id: BitId) -> Component:
        path = self.component_path(bit_id)
        if not bit_id.version or not path.is_dir():
            raise MissingComponent(str(bit_id))
        return Component.from_dir(path, bit_id)

    def versions(self, bit_id: BitId) -> list[str]:
        base = self.get_path() / bit_id.namespace / bit_id.name
        return sorted(
            (d.name for d in _visible_dirs(base) if is_semver(d.name)), key=Version,
        )

    def clean(self, bit_id: BitId) -> bool:
        """删除本地版本副本（推送成功后调用）"""
        path = self.component_path(bit_id)
        if not bit_id.version or not path.is_dir():
            return False
        shutil.rmtree(path)
        _prune_empty(path.parent, self.get_path())
        logger.info("已清理本地副本: %s", bit_id)
        return True

    def walk(self) -> SourceWalk:
        return SourceWalk(self.get_path())


# =========================================================================
# 外部依赖缓存区
# =========================================================================


class External(Repository):
    """外部依赖缓存区，只存放带来源 scope 的组件"""

    dirname = EXTERNAL_DIRNAME

    def component_path(self, bit_id: BitId) -> Path:
        return (
            self.get_path() / (bit_id.scope or "") / bit_id.namespace
            / bit_id.name / (bit_id.version or "")
        )

    def has(self, bit_id: BitId) -> bool:
        return bit_id.has_version() and not bit_id.is_local() and self.component_path(bit_id).is_dir()

    def store(self, components: Iterable[Component]) -> int:
        count = 0
        for component in components:
            if component.id.is_local():
                continue
            component.write_to(self.component_path(component.id))
            count += 1
        if count:
            logger.info("外部依赖已缓存: %d 个", count)
        return count

    def load(self, bit_id: BitId) -> Component | None:
        if not self.has(bit_id):
            return None
        return Component.from_dir(self.component_path(bit_id), bit_id)


# =========================================================================
# 临时暂存区
# =========================================================================


class Tmp(Repository):
    """临时暂存区"""

    dirname = TMP_DIRNAME

    def stage(self, name: str, contents: bytes) -> Path:
        """把归档暂存到 tmp/<name>.tar.gz"""
        self.ensure_dir()
        path = self.get_path() / f"{name.replace('/', '_')}.tar.gz"
        path.write_bytes(contents)
        return path

    def workdir(self, prefix: str) -> Path:
        self.ensure_dir()
        return Path(tempfile.mkdtemp(dir=str(self.get_path()), prefix=prefix))

    @staticmethod
    def remove(path: Path) -> None:
        if path.is_dir():
            shutil.rmtree(path, ignore_errors=True)
        else:
            path.unlink(missing_ok=True)


# =========================================================================
# 元数据缓存区（版本历史）
# =========================================================================


@dataclass
class VersionRecord:
    """单个版本的记录：内容哈希 + 导出目标 scope"""

    hash: str = ""
    exported_to: str | None = None


@dataclass
class HistoryRecord:
    """namespace/name 的版本历史"""

    key: str
    versions: dict[str, VersionRecord] = field(default_factory=dict)

    def latest(self) -> str | None:
        return max_version(self.versions)

    def has(self, version: str | None) -> bool:
        return bool(version) and version in self.versions

    def is_exported(self, version: str) -> bool:
        record = self.versions.get(version)
        return record is not None and record.exported_to is not None

    def staged_versions(self) -> list[str]:
        return sorted(
            (v for v, r in self.versions.items() if r.exported_to is None), key=Version,
        )

    def add(self, version: str, content_hash: str) -> None:
        self.versions[version] = VersionRecord(hash=content_hash)

    def mark_exported(self, version: str, scope_name: str) -> None:
        self.versions.setdefault(version, VersionRecord()).exported_to = scope_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "versions": {
                v: {"hash": r.hash, "exported_to": r.exported_to}
                for v, r in self.versions.items()
            },
        }

    @classmethod
    def from_dict(cls, key: str, data: dict[str, Any]) -> HistoryRecord:
        versions = {
            v: VersionRecord(hash=r.get("hash", ""), exported_to=r.get("exported_to"))
            for v, r in (data.get("versions") or {}).items()
            if is_semver(v)
        }
        return cls(key=key, versions=versions)


class Cache(Repository):
    """元数据缓存区"""

    dirname = CACHE_DIRNAME

    def record_path(self, bit_id: BitId) -> Path:
        return self.get_path() / bit_id.namespace / f"{bit_id.name}.json"

    def read(self, bit_id: BitId) -> HistoryRecord | None:
        """读取版本历史；缺失或损坏都返回 None（对账时视为“元数据不可读”）"""
        path = self.record_path(bit_id)
        try:
            data = load_json(path, default=lambda: None)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("版本历史不可读: %s (%s)", path, e)
            return None
        if not isinstance(data, dict):
            return None
        record = HistoryRecord.from_dict(bit_id.key, data)
        return record if record.versions else None

    def write(self, bit_id: BitId, record: HistoryRecord) -> None:
        path = self.record_path(bit_id)
        if not record.versions:
            path.unlink(missing_ok=True)
            return
        save_json(path, record.to_dict())

    def keys(self) -> list[BitId]:
        """所有有历史记录的 namespace/name（不带版本）"""
        result: list[BitId] = []
        for ns_dir in _visible_dirs(self.get_path()):
            for f in sorted(ns_dir.glob("*.json")):
                result.append(BitId(namespace=ns_dir.name, name=f.stem))
        return result
