"""bitscope 命令行接口

命令以数据表的形式声明（CommandSpec），各领域模块导出自己的表，
由 register_table 统一转换为 click 命令并挂到 main group。
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable

import click

from bitscope import __version__
from bitscope.core.exceptions import BitScopeError
from bitscope.services.container import ServiceContainer, get_container
from bitscope.utils.logger import setup_logging


@dataclass(frozen=True)
class CommandSpec:
    """一条命令：名称、说明、参数列表、处理函数"""

    name: str
    help: str
    params: tuple[click.Parameter, ...]
    handler: Callable[..., None]


class CommandError(click.ClickException):
    """把 BitScopeError 转为 click 输出，退出码取自错误种类"""

    def __init__(self, exc: BitScopeError) -> None:
        super().__init__(str(exc))
        self.exit_code = exc.exit_code


def _svc() -> ServiceContainer:
    """获取全局服务容器的快捷方式"""
    return get_container()


def _guarded(handler: Callable[..., None]) -> Callable[..., None]:
    @wraps(handler)
    def wrapper(**kwargs: Any) -> None:
        try:
            handler(**kwargs)
        except BitScopeError as e:
            raise CommandError(e) from e
    return wrapper


def build_command(spec: CommandSpec) -> click.Command:
    return click.Command(
        spec.name, callback=_guarded(spec.handler), params=list(spec.params), help=spec.help,
    )


def register_table(group: click.Group, table: list[CommandSpec]) -> None:
    for spec in table:
        group.add_command(build_command(spec))


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """bitscope - 组件版本仓库与工作区同步工具"""
    setup_logging(
        level=os.getenv("BITSCOPE_LOG_LEVEL", "WARNING"),
        json_output=os.getenv("BITSCOPE_LOG_JSON", "") == "1",
    )


# 注册各领域子命令
from bitscope.cli.cmd_misc import register as _reg_misc  # noqa: E402
from bitscope.cli.cmd_remote import register as _reg_remote  # noqa: E402
from bitscope.cli.cmd_workspace import register as _reg_workspace  # noqa: E402

_reg_workspace(main)
_reg_remote(main)
_reg_misc(main)
