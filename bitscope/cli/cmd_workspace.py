"""CLI 工作区命令: init / add / status / tag / untag / export / import / show"""

from __future__ import annotations

import json
from pathlib import Path

import click

from bitscope.cli import CommandSpec, _svc, register_table
from bitscope.core.exceptions import ValidationError
from bitscope.core.scope import Scope
from bitscope.core.version import Bump, BumpKind
from bitscope.services.workspace_service import WorkspaceService, render_status


def _init(path: str, bare: bool, name: str | None) -> None:
    svc = _svc()
    if bare:
        scope = Scope.create(Path(path), name=name, **svc.scope_kwargs()).ensure_dir()
        click.echo(f"initialized a bare scope '{scope.name}' at {scope.path}")
        return
    ws = WorkspaceService.init(path, **svc.scope_kwargs())
    click.echo(f"initialized a workspace at {ws.root}")


def _add(root: str, bit_id: str | None) -> None:
    entry = _svc().workspace.add(Path(root).resolve(), bit_id)
    click.echo(f"tracking component {entry.id} at {entry.root}")


def _status() -> None:
    click.echo(render_status(_svc().workspace.status()))


def _bump(patch: bool, minor: bool, major: bool, exact_version: str | None) -> Bump:
    chosen = [kind for flag, kind in (
        (patch, BumpKind.PATCH), (minor, BumpKind.MINOR), (major, BumpKind.MAJOR),
    ) if flag]
    if exact_version:
        if chosen:
            raise ValidationError("--exact-version cannot be combined with a bump flag")
        return Bump.explicit(exact_version)
    if len(chosen) > 1:
        raise ValidationError("choose only one of --patch, --minor and --major")
    return Bump(kind=chosen[0]) if chosen else Bump()


def _tag(
    bit_id: str | None, all_: bool, force: bool,
    patch: bool, minor: bool, major: bool, exact_version: str | None,
) -> None:
    report = _svc().workspace.tag(
        bit_id, all_components=all_, force=force,
        bump=_bump(patch, minor, major, exact_version),
    )
    if not report.tagged:
        click.echo("nothing to tag")
        return
    click.echo(f"{len(report.tagged)} component(s) tagged")
    for tagged in report.tagged:
        click.echo(f"     > {tagged}")


def _untag(bit_id: str) -> None:
    removed = _svc().workspace.untag(bit_id)
    click.echo(f"untagged {removed}")


def _export(bit_id: str | None, all_: bool, remote: str | None) -> None:
    report = _svc().workspace.export(bit_id, all_components=all_, remote=remote)
    click.echo(report.message)


def _import(bit_ids: tuple[str, ...]) -> None:
    imported = _svc().workspace.import_components(list(bit_ids) or None)
    if not imported:
        click.echo("nothing to import")
        return
    for bit_id in imported:
        click.echo(f"imported {bit_id}")


def _show(bit_id: str, as_json: bool) -> None:
    info = _svc().workspace.show(bit_id)
    if as_json:
        click.echo(json.dumps(info, indent=2, ensure_ascii=False))
        return
    for key, value in info.items():
        if isinstance(value, list):
            value = ", ".join(map(str, value)) or "-"
        click.echo(f"{key:14s} {value if value is not None else '-'}")


def _all_flag() -> click.Option:
    return click.Option(["--all", "-a", "all_"], is_flag=True, help="作用于全部组件")


COMMANDS: list[CommandSpec] = [
    CommandSpec("init", "初始化工作区（--bare 初始化裸 scope）", (
        click.Argument(["path"], default="."),
        click.Option(["--bare"], is_flag=True, help="只创建 scope，不创建工作区"),
        click.Option(["--name"], default=None, help="裸 scope 名称（默认取目录名）"),
    ), _init),
    CommandSpec("add", "跟踪组件目录", (
        click.Argument(["root"]),
        click.Option(["--id", "bit_id"], default=None, help="组件 id，默认取目录的最后两级"),
    ), _add),
    CommandSpec("status", "显示工作区组件状态并同步 .bitmap", (), _status),
    CommandSpec("tag", "为组件打版本", (
        click.Argument(["bit_id"], required=False),
        _all_flag(),
        click.Option(["--force", "-f"], is_flag=True, help="未修改的组件也打版本"),
        click.Option(["--patch"], is_flag=True, help="递增补丁版本（默认）"),
        click.Option(["--minor"], is_flag=True, help="递增次版本"),
        click.Option(["--major"], is_flag=True, help="递增主版本"),
        click.Option(["--exact-version"], default=None, help="指定版本号"),
    ), _tag),
    CommandSpec("untag", "撤销暂存版本", (click.Argument(["bit_id"]),), _untag),
    CommandSpec("export", "导出暂存版本到远端 scope", (
        click.Argument(["bit_id"], required=False),
        _all_flag(),
        click.Option(["--remote", "-r"], default=None, help="远端别名"),
    ), _export),
    CommandSpec("import", "从远端导入组件（默认导入全部待导入组件）", (
        click.Argument(["bit_ids"], nargs=-1),
    ), _import),
    CommandSpec("show", "查看组件", (
        click.Argument(["bit_id"]),
        click.Option(["--json", "as_json"], is_flag=True, help="JSON 输出"),
    ), _show),
]


def register(group: click.Group) -> None:
    register_table(group, COMMANDS)
