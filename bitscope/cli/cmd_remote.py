"""CLI 远端管理命令: remote add / rm / list"""

from __future__ import annotations

import click

from bitscope.cli import CommandSpec, _svc, register_table


def _add(address: str, alias: str | None, global_: bool) -> None:
    alias = _svc().remotes.add(address, alias, global_=global_)
    click.echo(f"added remote '{alias}' -> {address}")


def _rm(alias: str, global_: bool) -> None:
    _svc().remotes.remove(alias, global_=global_)
    click.echo(f"removed remote '{alias}'")


def _list(global_: bool) -> None:
    remotes = _svc().remotes.list_remotes(global_=global_)
    if not remotes:
        click.echo("no remotes configured")
        return
    for alias, address in remotes.items():
        click.echo(f"  {alias:20s} {address}")


def _global_flag() -> click.Option:
    return click.Option(["--global", "-g", "global_"], is_flag=True, help="使用用户级注册表")


COMMANDS: list[CommandSpec] = [
    CommandSpec("add", "注册远端 scope（未指定别名时使用远端 scope 名）", (
        click.Argument(["address"]),
        click.Option(["--alias"], default=None, help="远端别名"),
        _global_flag(),
    ), _add),
    CommandSpec("rm", "移除远端", (click.Argument(["alias"]), _global_flag()), _rm),
    CommandSpec("list", "列出远端", (_global_flag(),), _list),
]


@click.group()
def remote() -> None:
    """管理远端 scope"""


register_table(remote, COMMANDS)


def register(group: click.Group) -> None:
    group.add_command(remote)
