"""共享测试夹具：组件目录、组件对象与本地 scope"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

import pytest

from bitscope.core.bit_id import BitId
from bitscope.core.component import Component, Manifest
from bitscope.core.remotes import GlobalRemotes
from bitscope.core.scope import Scope
from bitscope.services.workspace_service import WorkspaceService


@pytest.fixture()
def write_component() -> Callable[..., Path]:
    """在目录中写出一个工作区组件（component.json + impl 文件）"""

    def _write(
        path: Path,
        content: str = "print('hello')\n",
        deps: list[str] | None = None,
        spec: str | None = None,
        compiler: str | None = None,
    ) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        manifest: dict = {"impl": "impl.py", "dependencies": deps or []}
        if spec:
            manifest["spec"] = spec
            (path / spec).write_text("assert True\n", encoding="utf-8")
        if compiler:
            manifest["compiler"] = compiler
        (path / "component.json").write_text(json.dumps(manifest), encoding="utf-8")
        (path / "impl.py").write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def make_component() -> Callable[..., Component]:
    def _make(bit_id: str, deps: tuple[str, ...] = (), content: str = "x = 1\n") -> Component:
        return Component(
            id=BitId.parse(bit_id),
            manifest=Manifest(impl="impl.py", dependencies=tuple(deps)),
            impl_files={"impl.py": content.encode("utf-8")},
        )

    return _make


@pytest.fixture()
def remote_scope(tmp_path: Path) -> Scope:
    """名为 remote 的裸 scope"""
    return Scope.create(tmp_path / "remote", name="remote").ensure_dir()


@pytest.fixture()
def local_scope(tmp_path: Path, remote_scope: Scope) -> Scope:
    """名为 local 的裸 scope，已登记 remote 远端"""
    scope = Scope.create(tmp_path / "local", name="local")
    scope.scope_json.add_remote("remote", str(remote_scope.path))
    return scope.ensure_dir()


@pytest.fixture()
def global_remotes(tmp_path: Path, remote_scope: Scope) -> GlobalRemotes:
    """用户级远端表，登记了 remote"""
    registry = GlobalRemotes(tmp_path / "global" / "remotes.yml")
    registry.add("remote", str(remote_scope.path))
    return registry


@pytest.fixture()
def open_workspace(tmp_path: Path, global_remotes: GlobalRemotes) -> Callable[..., WorkspaceService]:
    """打开（或初始化）tmp_path/ws 工作区；每次调用都重新加载磁盘状态"""

    def _open(init: bool = False) -> WorkspaceService:
        root = tmp_path / "ws"
        if init:
            return WorkspaceService.init(root, global_remotes=global_remotes)
        return WorkspaceService(root, global_remotes=global_remotes)

    return _open
