"""CLI 其它命令: serve"""

from __future__ import annotations

import click

from bitscope.cli import CommandSpec, _svc, register_table


def _serve(path: str, port: int, host: str) -> None:
    from bitscope.web.app import run_server
    run_server(path, port=port, host=host, **_svc().scope_kwargs())


COMMANDS: list[CommandSpec] = [
    CommandSpec("serve", "以 HTTP 方式暴露 scope，供其它工作区 export / import", (
        click.Argument(["path"], default="."),
        click.Option(["--port"], default=8888, help="监听端口"),
        click.Option(["--host"], default="127.0.0.1", help="监听地址"),
    ), _serve),
]


def register(group: click.Group) -> None:
    register_table(group, COMMANDS)
