"""组件模型与归档编解码单元测试"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from bitscope.core.bit_id import BitId
from bitscope.core.component import MANIFEST_FILE, Component, Manifest
from bitscope.core.exceptions import ValidationError


class TestManifest:
    def test_valid(self) -> None:
        Manifest(impl="impl.py", spec="impl.spec.py", dependencies=("bar/util",)).validate()

    def test_collects_all_problems(self) -> None:
        manifest = Manifest(impl="../evil.py", dependencies=("bad id", "bar/a", "bar/a@0.0.1"))
        with pytest.raises(ValidationError) as exc_info:
            manifest.validate()
        details = exc_info.value.details
        assert any("impl" in d for d in details)
        assert any("bad id" in d for d in details)
        assert any("declared twice" in d for d in details)

    def test_from_dict_is_lenient(self) -> None:
        manifest = Manifest.from_dict({"impl": "a.py", "dependencies": "bar/util"})
        assert manifest.dependencies == ("bar/util",)


class TestComponent:
    def test_missing_impl_file(self, make_component) -> None:
        component = make_component("bar/foo@0.0.1")
        broken = Component(id=component.id, manifest=Manifest(impl="other.py"))
        with pytest.raises(ValidationError):
            broken.validate()

    def test_remote_dependencies_are_qualified(self, make_component) -> None:
        component = make_component("remote/bar/foo@0.0.1", deps=("bar/util@0.0.1", "x/y/z@1.0.0"))
        assert [str(d) for d in component.dependencies] == [
            "remote/bar/util@0.0.1", "x/y/z@1.0.0",
        ]

    def test_content_hash_ignores_id(self, make_component) -> None:
        a = make_component("bar/foo@0.0.1")
        b = make_component("bar/foo@0.0.2")
        c = make_component("bar/foo@0.0.1", content="x = 2\n")
        assert a.content_hash() == b.content_hash()
        assert a.content_hash() != c.content_hash()

    def test_content_hash_ignores_pinned_versions(self, make_component) -> None:
        declared = make_component("bar/foo@0.0.1", deps=("bar/util",))
        pinned = declared.with_pinned_dependencies({"bar/util": BitId.parse("remote/bar/util@0.0.2")})
        other = make_component("bar/foo@0.0.1", deps=("bar/other",))
        assert pinned.manifest.dependencies == ("remote/bar/util@0.0.2",)
        assert declared.content_hash() == pinned.content_hash()
        assert declared.content_hash() != other.content_hash()


class TestDirectoryIO:
    def test_from_workspace_dir(self, tmp_path: Path, write_component) -> None:
        path = write_component(tmp_path / "bar" / "foo", spec="impl.spec.py")
        component = Component.from_dir(path, BitId.parse("bar/foo"))
        assert component.manifest.impl == "impl.py"
        assert set(component.impl_files) == {"impl.py"}
        assert set(component.spec_files) == {"impl.spec.py"}

    def test_write_then_load_keeps_id(self, tmp_path: Path, make_component) -> None:
        component = make_component("bar/foo@0.0.1")
        component.write_to(tmp_path / "out")
        data = json.loads((tmp_path / "out" / MANIFEST_FILE).read_text(encoding="utf-8"))
        assert data["id"] == "bar/foo@0.0.1"
        assert Component.from_dir(tmp_path / "out") == component

    def test_missing_manifest(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            Component.from_dir(tmp_path, BitId.parse("bar/foo"))


class TestArchive:
    def test_archive_is_deterministic(self, make_component) -> None:
        component = make_component("bar/foo@0.0.1")
        assert component.to_archive() == component.to_archive()

    def test_origin_qualifies_local_id(self, make_component) -> None:
        component = make_component("bar/foo@0.0.1", deps=("bar/util@0.0.1",))
        decoded = Component.from_archive(component.to_archive(), origin="remote")
        assert str(decoded.id) == "remote/bar/foo@0.0.1"
        assert [str(d) for d in decoded.dependencies] == ["remote/bar/util@0.0.1"]
        assert decoded.impl_files == component.impl_files

    def test_corrupt_archive(self) -> None:
        with pytest.raises(ValidationError):
            Component.from_archive(b"not a tarball")
