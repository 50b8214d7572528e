"""组件模型与归档编解码

组件目录（工作区根目录或源存储版本目录）结构:
    component.json   清单：impl / spec / compiler / tester / dependencies
    <impl files>     实现文件（顶层普通文件）
    <spec file>      可选测试文件，由清单 spec 字段指明

归档（fetch / push 的传输单元）是一个 gzip tar 包，包含 component.json
（附带 id）和全部文件，文件名即 tar 成员名。
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
import tarfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from bitscope.core.bit_id import BitId
from bitscope.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

MANIFEST_FILE = "component.json"
DIST_DIR = "dist"


def _is_safe_filename(name: str) -> bool:
    return bool(name) and "/" not in name and "\\" not in name and name not in (".", "..")


@dataclass(frozen=True)
class Manifest:
    """组件清单"""

    impl: str = ""
    spec: str | None = None
    compiler: str | None = None
    tester: str | None = None
    dependencies: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Manifest:
        """宽松读取，类型问题留给 validate() 统一报告"""
        deps = data.get("dependencies") or ()
        return cls(
            impl=data.get("impl", ""),
            spec=data.get("spec"),
            compiler=data.get("compiler"),
            tester=data.get("tester"),
            dependencies=tuple(deps) if isinstance(deps, (list, tuple)) else (deps,),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "impl": self.impl,
            "spec": self.spec,
            "compiler": self.compiler,
            "tester": self.tester,
            "dependencies": list(self.dependencies),
        }

    def validate(self) -> None:
        """结构校验，失败时抛 ValidationError 并附带全部问题"""
        problems: list[str] = []
        if not isinstance(self.impl, str) or not _is_safe_filename(self.impl):
            problems.append("impl must be a plain file name")
        if self.impl == MANIFEST_FILE:
            problems.append(f"impl cannot be {MANIFEST_FILE}")
        if self.spec is not None and (
            not isinstance(self.spec, str) or not _is_safe_filename(self.spec)
        ):
            problems.append("spec must be a plain file name")
        if self.spec is not None and self.spec == self.impl:
            problems.append("spec and impl must differ")
        for field_name in ("compiler", "tester"):
            value = getattr(self, field_name)
            if value is not None and (not isinstance(value, str) or not value.strip()):
                problems.append(f"{field_name} must be a non-empty string")

        seen: set[str] = set()
        for raw in self.dependencies:
            if not isinstance(raw, str):
                problems.append(f"dependency {raw!r} is not a string")
                continue
            try:
                dep = BitId.parse(raw)
            except ValidationError:
                problems.append(f"dependency '{raw}' is not a valid id")
                continue
            key = dep.to_string(with_version=False)
            if key in seen:
                problems.append(f"dependency '{key}' declared twice")
            seen.add(key)

        if problems:
            raise ValidationError("; ".join(problems), details=problems)


@dataclass(frozen=True)
class Component:
    """不可变组件：标识符 + 清单 + 文件内容"""

    id: BitId
    manifest: Manifest
    impl_files: dict[str, bytes] = field(default_factory=dict)
    spec_files: dict[str, bytes] = field(default_factory=dict)

    @property
    def dependencies(self) -> tuple[BitId, ...]:
        """声明的依赖；远端组件中的本地依赖按其来源 scope 补全"""
        deps = tuple(BitId.parse(raw) for raw in self.manifest.dependencies)
        if self.id.scope is None:
            return deps
        return tuple(d.qualify(self.id.scope) for d in deps)

    def has_compiler(self) -> bool:
        return bool(self.manifest.compiler)

    def files(self) -> dict[str, bytes]:
        return {**self.impl_files, **self.spec_files}

    def validate(self) -> None:
        """清单校验 + 入口文件存在性校验"""
        self.manifest.validate()
        problems: list[str] = []
        if self.manifest.impl not in self.impl_files:
            problems.append(f"impl file '{self.manifest.impl}' is missing")
        if self.manifest.spec and self.manifest.spec not in self.spec_files:
            problems.append(f"spec file '{self.manifest.spec}' is missing")
        for name in self.files():
            if not _is_safe_filename(name) or name == MANIFEST_FILE:
                problems.append(f"illegal file name '{name}'")
        if problems:
            raise ValidationError("; ".join(problems), details=problems)

    def with_id(self, bit_id: BitId) -> Component:
        return replace(self, id=bit_id)

    def with_pinned_dependencies(self, pins: dict[str, BitId]) -> Component:
        """把声明的依赖替换为解析到的具体版本（键为 namespace/name）"""
        pinned = tuple(
            str(pins[dep.key]) if dep.key in pins else raw
            for raw, dep in zip(self.manifest.dependencies, self.dependencies)
        )
        return replace(self, manifest=replace(self.manifest, dependencies=pinned))

    def content_hash(self) -> str:
        """内容哈希（不含标识符），用于判断工作区组件是否被修改

        依赖只按 namespace/name 参与哈希：入库时钉住的版本与来源 scope 不算修改。
        """
        data = self.manifest.to_dict()
        data["dependencies"] = sorted(d.key for d in self.dependencies)
        sha = hashlib.sha256()
        sha.update(json.dumps(data, sort_keys=True).encode("utf-8"))
        for name, data in sorted(self.files().items()):
            sha.update(name.encode("utf-8"))
            sha.update(b"\0")
            sha.update(hashlib.sha256(data).digest())
        return sha.hexdigest()

    def describe(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "impl": self.manifest.impl,
            "spec": self.manifest.spec,
            "compiler": self.manifest.compiler,
            "tester": self.manifest.tester,
            "dependencies": [str(d) for d in self.dependencies],
            "files": sorted(self.files()),
        }

    # ------------------------------------------------------------------
    # 目录读写
    # ------------------------------------------------------------------

    @classmethod
    def from_dir(cls, path: Path, bit_id: BitId | None = None) -> Component:
        """从组件目录加载

        bit_id 为空时使用 component.json 中记录的 id（源存储目录总是带 id）。
        """
        manifest_path = path / MANIFEST_FILE
        if not manifest_path.is_file():
            raise ValidationError(f"{MANIFEST_FILE} not found in {path}")
        try:
            data = json.loads(manifest_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValidationError(f"{manifest_path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError(f"{manifest_path} must contain an object")

        if bit_id is None:
            if "id" not in data:
                raise ValidationError(f"{manifest_path} has no id")
            bit_id = BitId.parse(data["id"])
        manifest = Manifest.from_dict(data)

        impl_files: dict[str, bytes] = {}
        spec_files: dict[str, bytes] = {}
        for child in sorted(path.iterdir()):
            if not child.is_file() or child.name == MANIFEST_FILE or child.name.startswith("."):
                continue
            target = spec_files if child.name == manifest.spec else impl_files
            target[child.name] = child.read_bytes()
        return cls(id=bit_id, manifest=manifest, impl_files=impl_files, spec_files=spec_files)

    def write_to(self, path: Path) -> None:
        """写出到组件目录（component.json 附带完整 id）"""
        path.mkdir(parents=True, exist_ok=True)
        manifest = {"id": str(self.id), **self.manifest.to_dict()}
        (path / MANIFEST_FILE).write_text(
            json.dumps(manifest, indent=2, sort_keys=True) + "\n", encoding="utf-8",
        )
        for name, data in self.files().items():
            (path / name).write_bytes(data)

    # ------------------------------------------------------------------
    # 归档编解码
    # ------------------------------------------------------------------

    def to_archive(self) -> bytes:
        """编码为 gzip tar 归档（成员 mtime 固定，内容相同则字节相同）"""
        buf = io.BytesIO()
        manifest = {"id": str(self.id), **self.manifest.to_dict()}
        members = {MANIFEST_FILE: json.dumps(manifest, sort_keys=True).encode("utf-8")}
        members.update(self.files())
        with tarfile.open(fileobj=buf, mode="w:gz") as tf:
            for name in sorted(members):
                data = members[name]
                info = tarfile.TarInfo(name=name)
                info.size = len(data)
                info.mtime = 0
                tf.addfile(info, io.BytesIO(data))
        return buf.getvalue()

    @classmethod
    def from_archive(cls, contents: bytes, origin: str | None = None) -> Component:
        """解码归档；origin 为来源 scope 名，本地标识符会被补上该 scope"""
        files: dict[str, bytes] = {}
        try:
            with tarfile.open(fileobj=io.BytesIO(contents), mode="r:gz") as tf:
                for member in tf.getmembers():
                    if not member.isfile() or not _is_safe_filename(member.name):
                        raise ValidationError(f"illegal archive member '{member.name}'")
                    extracted = tf.extractfile(member)
                    if extracted is None:
                        continue
                    files[member.name] = extracted.read()
        except tarfile.TarError as e:
            raise ValidationError(f"corrupt component archive: {e}") from e

        raw_manifest = files.pop(MANIFEST_FILE, None)
        if raw_manifest is None:
            raise ValidationError(f"archive has no {MANIFEST_FILE}")
        data = json.loads(raw_manifest.decode("utf-8"))
        bit_id = BitId.parse(data["id"])
        if origin:
            bit_id = bit_id.qualify(origin)
        manifest = Manifest.from_dict(data)
        spec_files = {k: v for k, v in files.items() if k == manifest.spec}
        impl_files = {k: v for k, v in files.items() if k != manifest.spec}
        return cls(id=bit_id, manifest=manifest, impl_files=impl_files, spec_files=spec_files)
