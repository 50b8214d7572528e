"""WorkspaceService 单元测试"""

from __future__ import annotations

import asyncio
import json
import shutil
from pathlib import Path
from typing import Callable

import pytest

from bitscope.core.bit_id import BitId
from bitscope.core.exceptions import (
    ComponentNotFound,
    MissingWorkspaceComponent,
    RemoteNotFound,
    ScopeNotFound,
    ValidationError,
)
from bitscope.core.remotes import GlobalRemotes
from bitscope.core.scope import Scope
from bitscope.core.version import Bump, BumpKind
from bitscope.services.reconcile import ComponentState
from bitscope.services.workspace_service import (
    NO_LOCAL_CHANGES_MSG,
    STATUS_CLEAN_MSG,
    WorkspaceService,
    find_workspace_root,
    render_status,
)


@pytest.fixture()
def ws(open_workspace: Callable[..., WorkspaceService], write_component: Callable[..., Path]) -> WorkspaceService:
    svc = open_workspace(init=True)
    write_component(svc.root / "bar" / "foo")
    svc.add("bar/foo")
    return svc


def _bitmap(svc: WorkspaceService) -> dict:
    return json.loads((svc.root / ".bitmap").read_text(encoding="utf-8"))


class TestInitAndDiscover:
    def test_init_is_idempotent(self, tmp_path: Path) -> None:
        WorkspaceService.init(tmp_path / "ws")
        svc = WorkspaceService.init(tmp_path / "ws")
        assert (svc.root / ".bitscope" / "sources").is_dir()
        assert (svc.root / ".bitscope" / "scope.json").is_file()
        assert _bitmap(svc) == {}

    def test_discover_from_nested_dir(self, tmp_path: Path) -> None:
        WorkspaceService.init(tmp_path / "ws")
        nested = tmp_path / "ws" / "a" / "b"
        nested.mkdir(parents=True)
        assert find_workspace_root(nested) == (tmp_path / "ws").resolve()
        assert WorkspaceService.discover(nested).root == (tmp_path / "ws").resolve()

    def test_discover_without_workspace(self, tmp_path: Path) -> None:
        with pytest.raises(ScopeNotFound):
            WorkspaceService.discover(tmp_path)


class TestAdd:
    def test_default_id_from_path(self, ws: WorkspaceService) -> None:
        assert _bitmap(ws) == {
            "bar/foo": {"id": "bar/foo", "exported": False, "files": ["impl.py"]},
        }

    def test_explicit_id_drops_version_and_scope(
        self, ws: WorkspaceService, write_component: Callable[..., Path],
    ) -> None:
        write_component(ws.root / "libs" / "utils")
        entry = ws.add(ws.root / "libs" / "utils", "remote/tools/utils@1.0.0")
        assert str(entry.id) == "tools/utils"
        assert entry.root == "libs/utils"

    def test_rejects_non_directory(self, ws: WorkspaceService) -> None:
        with pytest.raises(ValidationError):
            ws.add("nope/missing")

    def test_rejects_path_outside_workspace(self, ws: WorkspaceService, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            ws.add(tmp_path / "elsewhere")

    def test_rejects_dir_without_manifest(self, ws: WorkspaceService) -> None:
        (ws.root / "bar" / "empty").mkdir()
        with pytest.raises(ValidationError):
            ws.add("bar/empty")

    def test_rejects_single_level_without_id(
        self, ws: WorkspaceService, write_component: Callable[..., Path],
    ) -> None:
        write_component(ws.root / "solo")
        with pytest.raises(ValidationError):
            ws.add("solo")


class TestTag:
    def test_first_tag(self, ws: WorkspaceService) -> None:
        report = ws.tag("bar/foo")
        assert report.tagged == [BitId.parse("bar/foo@0.0.1")]
        assert _bitmap(ws)["bar/foo"]["id"] == "bar/foo@0.0.1"
        assert ws.scope.sources.has(BitId.parse("bar/foo@0.0.1"))

    def test_unchanged_component_is_skipped(self, ws: WorkspaceService) -> None:
        ws.tag("bar/foo")
        report = ws.tag("bar/foo")
        assert report.tagged == []
        assert report.skipped == [BitId.parse("bar/foo@0.0.1")]

    def test_modified_component_gets_next_patch(self, ws: WorkspaceService) -> None:
        ws.tag("bar/foo")
        (ws.root / "bar" / "foo" / "impl.py").write_text("print(2)\n", encoding="utf-8")
        assert ws.tag("bar/foo").tagged == [BitId.parse("bar/foo@0.0.2")]

    def test_force_with_bump(self, ws: WorkspaceService) -> None:
        ws.tag("bar/foo")
        report = ws.tag("bar/foo", force=True, bump=Bump(BumpKind.MINOR))
        assert report.tagged == [BitId.parse("bar/foo@0.1.0")]

    def test_exact_version(self, ws: WorkspaceService) -> None:
        report = ws.tag("bar/foo", bump=Bump.explicit("2.0.0"))
        assert report.tagged == [BitId.parse("bar/foo@2.0.0")]
        with pytest.raises(ValidationError):
            ws.tag("bar/foo", force=True, bump=Bump.explicit("1.0.0"))

    def test_base_version_comes_from_scope_not_bitmap(self, ws: WorkspaceService) -> None:
        ws.tag("bar/foo")
        ws.tag("bar/foo", force=True, bump=Bump.explicit("2.0.0"))
        ws.bit_map.get("bar/foo").id = BitId.parse("bar/foo@0.0.1")
        assert ws.tag("bar/foo", force=True).tagged == [BitId.parse("bar/foo@2.0.1")]

    def test_all_in_dependency_order(
        self, ws: WorkspaceService, write_component: Callable[..., Path],
    ) -> None:
        write_component(ws.root / "bar" / "app", deps=["bar/util"])
        write_component(ws.root / "bar" / "util")
        ws.add("bar/app")
        ws.add("bar/util")

        report = ws.tag(all_components=True)

        ids = [str(i) for i in report.tagged]
        assert ids.index("bar/util@0.0.1") < ids.index("bar/app@0.0.1")
        assert set(ids) == {"bar/app@0.0.1", "bar/foo@0.0.1", "bar/util@0.0.1"}

    def test_unknown_component(self, ws: WorkspaceService) -> None:
        with pytest.raises(MissingWorkspaceComponent):
            ws.tag("bar/unknown")

    def test_needs_target(self, ws: WorkspaceService) -> None:
        with pytest.raises(ValidationError):
            ws.tag()

    def test_missing_root(self, ws: WorkspaceService) -> None:
        shutil.rmtree(ws.root / "bar" / "foo")
        with pytest.raises(ValidationError):
            ws.tag("bar/foo")
        assert ws.tag(all_components=True).skipped == [BitId.parse("bar/foo")]

    def test_invalid_manifest_persists_nothing(self, ws: WorkspaceService) -> None:
        (ws.root / "bar" / "foo" / "component.json").write_text(
            json.dumps({"impl": "missing.py"}), encoding="utf-8",
        )
        before = (ws.root / ".bitmap").read_bytes()
        with pytest.raises(ValidationError):
            ws.tag("bar/foo")
        assert (ws.root / ".bitmap").read_bytes() == before
        assert ws.scope.history(BitId.parse("bar/foo")) is None


class TestUntag:
    def test_untag_latest(self, ws: WorkspaceService) -> None:
        ws.tag("bar/foo")
        ws.tag("bar/foo", force=True)
        assert ws.untag("bar/foo") == BitId.parse("bar/foo@0.0.2")
        assert _bitmap(ws)["bar/foo"]["id"] == "bar/foo@0.0.1"

    def test_untag_last_version_makes_component_new(self, ws: WorkspaceService) -> None:
        ws.tag("bar/foo")
        ws.untag("bar/foo@0.0.1")
        assert ws.status().find(BitId.parse("bar/foo")).state == ComponentState.NEW
        assert _bitmap(ws)["bar/foo"]["id"] == "bar/foo"

    def test_nothing_to_untag(self, ws: WorkspaceService) -> None:
        with pytest.raises(ComponentNotFound):
            ws.untag("bar/foo")

    def test_exported_version_cannot_be_untagged(self, ws: WorkspaceService) -> None:
        ws.tag("bar/foo")
        ws.export("bar/foo")
        with pytest.raises(ValidationError):
            ws.untag("bar/foo@0.0.1")


class TestExport:
    def test_export_rewrites_entry(self, ws: WorkspaceService, remote_scope: Scope) -> None:
        ws.tag("bar/foo")
        result = ws.export("bar/foo")

        assert result.message == "exported 1 components to scope remote"
        assert _bitmap(ws)["bar/foo"] == {
            "id": "remote/bar/foo@0.0.1", "exported": True, "files": ["impl.py"],
        }
        assert remote_scope.sources.has(BitId.parse("bar/foo@0.0.1"))
        assert not ws.scope.sources.has(BitId.parse("bar/foo@0.0.1"))

    def test_pushes_every_staged_version(self, ws: WorkspaceService, remote_scope: Scope) -> None:
        ws.tag("bar/foo")
        ws.tag("bar/foo", force=True)
        ws.export(all_components=True)
        assert remote_scope.sources.versions(BitId.parse("bar/foo")) == ["0.0.1", "0.0.2"]
        assert _bitmap(ws)["bar/foo"]["id"] == "remote/bar/foo@0.0.2"

    def test_dependent_components_export_together(
        self, ws: WorkspaceService, write_component: Callable[..., Path], remote_scope: Scope,
    ) -> None:
        write_component(ws.root / "bar" / "app", deps=["bar/foo"])
        ws.add("bar/app")
        ws.tag(all_components=True)

        result = ws.export(all_components=True)

        assert result.message == "exported 2 components to scope remote"
        closure = [str(c.id) for c in asyncio.run(remote_scope.get(BitId.parse("bar/app")))]
        assert closure == ["bar/foo@0.0.1", "bar/app@0.0.1"]

    def test_untracked_staged_export_reports_no_local_changes(self, ws: WorkspaceService) -> None:
        ws.tag("bar/foo")
        (ws.root / ".bitmap").unlink()
        svc = WorkspaceService(ws.root, global_remotes=ws.scope.global_remotes)

        result = svc.export("bar/foo")

        assert NO_LOCAL_CHANGES_MSG in result.message
        assert result.untracked == [BitId.parse("remote/bar/foo@0.0.1")]

    def test_unknown_component(self, ws: WorkspaceService) -> None:
        with pytest.raises(ComponentNotFound):
            ws.export("bar/foo")

    def test_unknown_remote(self, ws: WorkspaceService) -> None:
        ws.tag("bar/foo")
        with pytest.raises(RemoteNotFound):
            ws.export("bar/foo", remote="nope")

    def test_ambiguous_remote(self, ws: WorkspaceService, tmp_path: Path) -> None:
        Scope.create(tmp_path / "second", name="second").ensure_dir()
        ws.scope.scope_json.add_remote("second", str(tmp_path / "second"))
        ws.tag("bar/foo")
        with pytest.raises(RemoteNotFound):
            ws.export("bar/foo")
        assert ws.export("bar/foo", remote="second").remote == "second"

    def test_default_remote(self, ws: WorkspaceService, tmp_path: Path) -> None:
        Scope.create(tmp_path / "second", name="second").ensure_dir()
        ws.scope.scope_json.add_remote("second", str(tmp_path / "second"))
        ws.default_remote = "remote"
        ws.tag("bar/foo")
        assert ws.export("bar/foo").remote == "remote"

    def test_single_component_brings_staged_dependencies(
        self, ws: WorkspaceService, write_component: Callable[..., Path], remote_scope: Scope,
    ) -> None:
        write_component(ws.root / "bar" / "app", deps=["bar/foo"])
        ws.add("bar/app")
        ws.tag(all_components=True)

        result = ws.export("bar/app")

        assert result.message == "exported 2 components to scope remote"
        assert [str(i) for i in result.exported] == ["remote/bar/foo@0.0.1", "remote/bar/app@0.0.1"]
        stored = asyncio.run(remote_scope.get_one(BitId.parse("bar/app@0.0.1")))
        assert stored.manifest.dependencies == ("bar/foo@0.0.1",)
        assert _bitmap(ws)["bar/foo"]["exported"] is True

    def test_exported_dependency_is_not_pushed_again(
        self, ws: WorkspaceService, write_component: Callable[..., Path], remote_scope: Scope,
    ) -> None:
        ws.tag("bar/foo")
        ws.export("bar/foo")
        ws.tag("bar/foo", force=True)
        write_component(ws.root / "bar" / "app", deps=["bar/foo@0.0.1"])
        ws.add("bar/app")
        ws.tag("bar/app")

        result = ws.export("bar/app")

        assert [str(i) for i in result.exported] == ["remote/bar/app@0.0.1"]
        assert remote_scope.sources.versions(BitId.parse("bar/foo")) == ["0.0.1"]
        assert ws.scope.history(BitId.parse("bar/foo")).staged_versions() == ["0.0.2"]

    def test_no_remote_configured_changes_nothing(
        self, tmp_path: Path, write_component: Callable[..., Path],
    ) -> None:
        svc = WorkspaceService.init(
            tmp_path / "lone", global_remotes=GlobalRemotes(tmp_path / "empty" / "remotes.yml"),
        )
        write_component(svc.root / "bar" / "foo")
        svc.add("bar/foo")
        svc.tag("bar/foo")
        bitmap = (svc.root / ".bitmap").read_bytes()
        history = (svc.scope.path / "cache" / "bar" / "foo.json").read_bytes()

        with pytest.raises(RemoteNotFound):
            svc.export("bar/foo")
        with pytest.raises(RemoteNotFound):
            svc.export(all_components=True)

        assert (svc.root / ".bitmap").read_bytes() == bitmap
        assert (svc.scope.path / "cache" / "bar" / "foo.json").read_bytes() == history
        assert svc.scope.sources.has(BitId.parse("bar/foo@0.0.1"))


class TestShowAndStatus:
    def test_show_workspace_component(self, ws: WorkspaceService) -> None:
        info = ws.show("bar/foo")
        assert info["id"] == "bar/foo"
        assert info["state"] == "new"
        assert info["root"] == "bar/foo"
        assert info["files"] == ["impl.py"]

    def test_show_stored_version(self, ws: WorkspaceService) -> None:
        ws.tag("bar/foo")
        info = ws.show("bar/foo@0.0.1")
        assert info["id"] == "bar/foo@0.0.1"
        assert info["state"] == "staged"

    def test_show_untracked(self, ws: WorkspaceService) -> None:
        with pytest.raises(MissingWorkspaceComponent):
            ws.show("bar/unknown")

    def test_render_sections(self, ws: WorkspaceService) -> None:
        text = render_status(ws.status())
        assert text.splitlines() == ["new components", "     > bar/foo"]

        ws.tag("bar/foo")
        assert "staged components\n     > bar/foo@0.0.1" in render_status(ws.status())

        ws.export("bar/foo")
        assert render_status(ws.status()) == STATUS_CLEAN_MSG
