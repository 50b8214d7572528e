"""Scope 仓库引擎单元测试"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

import pytest

from bitscope.core.bit_id import BitId
from bitscope.core.component import Component, Manifest
from bitscope.core.exceptions import (
    BitNotInScope,
    BuildFailed,
    ComponentNotFound,
    ScopeNotFound,
    ValidationError,
    VersionNotFound,
)
from bitscope.core.repositories import HistoryRecord
from bitscope.core.scope import Scope


def _ids(components: list[Component]) -> list[str]:
    return [str(c.id) for c in components]


def _put(scope: Scope, component: Component) -> list[Component]:
    return asyncio.run(scope.put(component))


class TestCreateAndLoad:
    def test_create_is_uncommitted_until_ensure_dir(self, tmp_path: Path) -> None:
        scope = Scope.create(tmp_path / "s", name="s")
        assert scope.created
        assert not (tmp_path / "s").exists()
        scope.ensure_dir()
        for area in ("sources", "external", "tmp", "cache"):
            assert (tmp_path / "s" / area).is_dir()
        assert (tmp_path / "s" / "scope.json").is_file()
        assert (tmp_path / "s" / "dependencies.json").is_file()

    def test_ensure_dir_is_idempotent(self, tmp_path: Path) -> None:
        scope = Scope.create(tmp_path / "s", name="s").ensure_dir()
        before = (tmp_path / "s" / "scope.json").read_bytes()
        scope.ensure_dir()
        assert (tmp_path / "s" / "scope.json").read_bytes() == before

    def test_create_defers_to_existing_scope(self, tmp_path: Path) -> None:
        Scope.create(tmp_path / "s", name="original").ensure_dir()
        again = Scope.create(tmp_path / "s", name="ignored")
        assert not again.created
        assert again.name == "original"

    def test_load_walks_up(self, local_scope: Scope) -> None:
        nested = local_scope.path / "sources"
        assert Scope.load(nested).path == local_scope.path.resolve()

    def test_load_without_marker(self, tmp_path: Path) -> None:
        with pytest.raises(ScopeNotFound):
            Scope.load(tmp_path / "nowhere")


class TestPutGet:
    def test_round_trip_returns_dependency_set(self, local_scope: Scope, make_component) -> None:
        _put(local_scope, make_component("bar/util@0.0.1"))
        stored = _put(local_scope, make_component("bar/foo@0.0.1", deps=("bar/util",)))
        assert _ids(stored) == ["bar/util@0.0.1", "bar/foo@0.0.1"]

        edges = local_scope.dependency_map.get(BitId.parse("bar/foo@0.0.1"))
        assert edges is not None
        closure = asyncio.run(local_scope.get(BitId.parse("bar/foo")))
        assert _ids(closure[:-1]) == [str(i) for i in edges.dependencies]
        assert str(closure[-1].id) == "bar/foo@0.0.1"

    def test_stored_dependencies_are_pinned(self, local_scope: Scope, make_component) -> None:
        _put(local_scope, make_component("bar/util@0.0.1"))
        _put(local_scope, make_component("bar/util@0.0.2"))
        _put(local_scope, make_component("bar/foo@0.0.1", deps=("bar/util",)))
        _put(local_scope, make_component("bar/util@0.0.3"))

        stored = asyncio.run(local_scope.get_one(BitId.parse("bar/foo@0.0.1")))
        assert stored.manifest.dependencies == ("bar/util@0.0.2",)
        closure = asyncio.run(local_scope.get(BitId.parse("bar/foo")))
        assert _ids(closure) == ["bar/util@0.0.2", "bar/foo@0.0.1"]

    def test_transitive_closure(self, local_scope: Scope, make_component) -> None:
        _put(local_scope, make_component("bar/c@0.0.1"))
        _put(local_scope, make_component("bar/b@0.0.1", deps=("bar/c",)))
        _put(local_scope, make_component("bar/a@0.0.1", deps=("bar/b",)))
        closure = asyncio.run(local_scope.get(BitId.parse("bar/a@latest")))
        assert _ids(closure) == ["bar/c@0.0.1", "bar/b@0.0.1", "bar/a@0.0.1"]

    def test_reload_sees_persisted_state(self, local_scope: Scope, make_component) -> None:
        _put(local_scope, make_component("bar/foo@0.0.1"))
        reloaded = Scope.load(local_scope.path)
        assert _ids(asyncio.run(reloaded.get(BitId.parse("bar/foo")))) == ["bar/foo@0.0.1"]
        record = reloaded.history(BitId.parse("bar/foo"))
        assert record is not None and record.staged_versions() == ["0.0.1"]

    @pytest.mark.parametrize("raw", ["bar/foo", "other/bar/foo@0.0.1"])
    def test_put_requires_local_versioned_id(self, local_scope: Scope, make_component, raw: str) -> None:
        with pytest.raises(ValidationError):
            _put(local_scope, make_component(raw))

    def test_own_scope_name_is_local(self, local_scope: Scope, make_component) -> None:
        stored = _put(local_scope, make_component("local/bar/foo@0.0.1"))
        assert _ids(stored) == ["bar/foo@0.0.1"]

    def test_failed_dependency_persists_nothing(self, local_scope: Scope, make_component) -> None:
        _put(local_scope, make_component("bar/util@0.0.1"))
        component = make_component("bar/foo@0.0.1", deps=("bar/util", "bar/missing"))
        with pytest.raises(ComponentNotFound):
            _put(local_scope, component)
        assert not local_scope.sources.has(component.id)
        assert local_scope.history(component.id) is None
        assert local_scope.dependency_map.get(component.id) is None

    def test_get_errors(self, local_scope: Scope, make_component) -> None:
        with pytest.raises(ComponentNotFound):
            asyncio.run(local_scope.get(BitId.parse("bar/foo")))
        _put(local_scope, make_component("bar/foo@0.0.1"))
        with pytest.raises(VersionNotFound):
            asyncio.run(local_scope.get(BitId.parse("bar/foo@9.9.9")))

    def test_history_without_edges_is_not_in_scope(self, local_scope: Scope) -> None:
        bit_id = BitId.parse("bar/ghost")
        record = HistoryRecord(bit_id.key)
        record.add("0.0.1", "h")
        local_scope.cache.write(bit_id, record)
        with pytest.raises(BitNotInScope):
            asyncio.run(local_scope.get(bit_id))

    def test_list_sources(self, local_scope: Scope, make_component) -> None:
        _put(local_scope, make_component("bar/foo@0.0.1"))
        _put(local_scope, make_component("bar/foo@0.0.2"))
        assert _ids(asyncio.run(local_scope.list_sources())) == ["bar/foo@0.0.1", "bar/foo@0.0.2"]


class TestRemoteTransfer:
    def test_push_moves_component_to_remote(
        self, local_scope: Scope, remote_scope: Scope, make_component,
    ) -> None:
        _put(local_scope, make_component("bar/foo@0.0.1"))
        remote = local_scope.remotes().resolve("remote")
        scope_name = asyncio.run(local_scope.push(BitId.parse("bar/foo@0.0.1"), remote))

        assert scope_name == "remote"
        assert remote_scope.sources.has(BitId.parse("bar/foo@0.0.1"))
        assert not local_scope.sources.has(BitId.parse("bar/foo@0.0.1"))
        record = local_scope.history(BitId.parse("bar/foo"))
        assert record is not None and record.is_exported("0.0.1")
        assert list((local_scope.path / "tmp").iterdir()) == []

    def test_get_foreign_id_fetches_from_remote(
        self, local_scope: Scope, remote_scope: Scope, make_component,
    ) -> None:
        _put(remote_scope, make_component("bar/util@0.0.1"))
        _put(remote_scope, make_component("bar/foo@0.0.1", deps=("bar/util",)))
        closure = asyncio.run(local_scope.get(BitId.parse("remote/bar/foo")))
        assert _ids(closure) == ["remote/bar/util@0.0.1", "remote/bar/foo@0.0.1"]

    def test_foreign_dependency_is_cached(
        self, local_scope: Scope, remote_scope: Scope, make_component,
    ) -> None:
        _put(remote_scope, make_component("bar/foo@0.0.1"))
        app = make_component("bar/app@0.0.1", deps=("remote/bar/foo@0.0.1",))
        _put(local_scope, app)

        edges = local_scope.dependency_map.get(app.id)
        assert edges is not None
        assert edges.remotes == {"remote/bar/foo@0.0.1": "remote"}
        assert local_scope.external.has(BitId.parse("remote/bar/foo@0.0.1"))

        shutil.rmtree(remote_scope.path)
        closure = asyncio.run(local_scope.get(app.id))
        assert _ids(closure) == ["remote/bar/foo@0.0.1", "bar/app@0.0.1"]

    def test_exported_local_dependency_resolves_remotely(
        self, local_scope: Scope, make_component,
    ) -> None:
        _put(local_scope, make_component("bar/foo@0.0.1"))
        asyncio.run(local_scope.push(
            BitId.parse("bar/foo@0.0.1"), local_scope.remotes().resolve("remote"),
        ))
        stored = _put(local_scope, make_component("bar/app@0.0.1", deps=("bar/foo",)))
        assert _ids(stored) == ["remote/bar/foo@0.0.1", "bar/app@0.0.1"]

    def test_exported_dependency_is_pinned_to_remote(
        self, local_scope: Scope, make_component,
    ) -> None:
        _put(local_scope, make_component("bar/foo@0.0.1"))
        asyncio.run(local_scope.push(
            BitId.parse("bar/foo@0.0.1"), local_scope.remotes().resolve("remote"),
        ))
        _put(local_scope, make_component("bar/app@0.0.1", deps=("bar/foo",)))
        stored = asyncio.run(local_scope.get_one(BitId.parse("bar/app@0.0.1")))
        assert stored.manifest.dependencies == ("remote/bar/foo@0.0.1",)

    def test_fetch_dedupes_closures(self, remote_scope: Scope, make_component) -> None:
        _put(remote_scope, make_component("bar/util@0.0.1"))
        _put(remote_scope, make_component("bar/a@0.0.1", deps=("bar/util",)))
        _put(remote_scope, make_component("bar/b@0.0.1", deps=("bar/util",)))
        archives = asyncio.run(remote_scope.fetch([BitId.parse("bar/a"), BitId.parse("bar/b")]))
        assert [a.id for a in archives] == ["bar/util@0.0.1", "bar/a@0.0.1", "bar/b@0.0.1"]

    def test_import_records_exported_version(
        self, local_scope: Scope, remote_scope: Scope, make_component,
    ) -> None:
        _put(remote_scope, make_component("bar/foo@0.0.1"))
        closure = asyncio.run(local_scope.fetch_import(BitId.parse("remote/bar/foo@0.0.1")))
        assert local_scope.history(BitId.parse("bar/foo")) is None

        target = local_scope.store_import(closure)

        assert str(target.id) == "remote/bar/foo@0.0.1"
        record = local_scope.history(BitId.parse("bar/foo"))
        assert record is not None
        assert record.versions["0.0.1"].exported_to == "remote"
        assert local_scope.external.has(BitId.parse("remote/bar/foo@0.0.1"))

    def test_import_rejects_local_id(self, local_scope: Scope) -> None:
        with pytest.raises(ValidationError):
            asyncio.run(local_scope.fetch_import(BitId.parse("bar/foo@0.0.1")))


class TestRemoveVersion:
    def test_untag_staged(self, local_scope: Scope, make_component) -> None:
        _put(local_scope, make_component("bar/foo@0.0.1"))
        _put(local_scope, make_component("bar/foo@2.0.0"))
        local_scope.remove_version(BitId.parse("bar/foo@2.0.0"))
        record = local_scope.history(BitId.parse("bar/foo"))
        assert record is not None and record.latest() == "0.0.1"
        assert not local_scope.sources.has(BitId.parse("bar/foo@2.0.0"))
        assert local_scope.dependency_map.get(BitId.parse("bar/foo@2.0.0")) is None

    def test_untag_unknown(self, local_scope: Scope) -> None:
        with pytest.raises(VersionNotFound):
            local_scope.remove_version(BitId.parse("bar/foo@0.0.1"))

    def test_untag_exported(self, local_scope: Scope, make_component) -> None:
        _put(local_scope, make_component("bar/foo@0.0.1"))
        asyncio.run(local_scope.push(
            BitId.parse("bar/foo@0.0.1"), local_scope.remotes().resolve("remote"),
        ))
        with pytest.raises(ValidationError):
            local_scope.remove_version(BitId.parse("bar/foo@0.0.1"))


class _DistBuilder:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.workdirs: list[Path] = []

    def build(self, component: Component, workdir: Path) -> Path:
        self.workdirs.append(workdir)
        if self.fail:
            raise BuildFailed(str(component.id))
        dist = workdir / "dist"
        dist.mkdir()
        (dist / "bundle.txt").write_text(component.manifest.impl, encoding="utf-8")
        return dist


def _compiled(bit_id: str) -> Component:
    return Component(
        id=BitId.parse(bit_id),
        manifest=Manifest(impl="impl.py", compiler="echo"),
        impl_files={"impl.py": b"x = 1\n"},
    )


class TestBuild:
    def test_build_output_is_stored(self, tmp_path: Path) -> None:
        builder = _DistBuilder()
        scope = Scope.create(tmp_path / "s", builder=builder).ensure_dir()
        _put(scope, _compiled("bar/foo@0.0.1"))
        dist = scope.sources.component_path(BitId.parse("bar/foo@0.0.1")) / "dist"
        assert (dist / "bundle.txt").read_text(encoding="utf-8") == "impl.py"
        assert not builder.workdirs[0].exists()

    def test_failed_build_persists_nothing(self, tmp_path: Path) -> None:
        builder = _DistBuilder(fail=True)
        scope = Scope.create(tmp_path / "s", builder=builder).ensure_dir()
        with pytest.raises(BuildFailed):
            _put(scope, _compiled("bar/foo@0.0.1"))
        assert scope.history(BitId.parse("bar/foo")) is None
        assert not builder.workdirs[0].exists()

    def test_without_builder_skips_build(self, tmp_path: Path) -> None:
        scope = Scope.create(tmp_path / "s").ensure_dir()
        _put(scope, _compiled("bar/foo@0.0.1"))
        path = scope.sources.component_path(BitId.parse("bar/foo@0.0.1"))
        assert path.is_dir()
        assert not (path / "dist").exists()
