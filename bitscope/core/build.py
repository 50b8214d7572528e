"""构建钩子

清单声明了 compiler 时，Scope.put 在落盘之前调用 Builder 完成构建，
构建产物随组件一起写入源存储区的 dist/ 目录。编译器插件本身不在本项目范围内，
默认实现 CommandBuilder 只是按配置把编译器名映射成一条 shell 命令。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from bitscope.core.component import Component
from bitscope.core.exceptions import BuildFailed
from bitscope.utils.shell import CommandExecutor, LocalExecutor

logger = logging.getLogger(__name__)


class Builder(Protocol):
    def build(self, component: Component, workdir: Path) -> Path:
        """在 workdir 中构建组件，返回产物目录"""
        ...


class CommandBuilder:
    """按 compilers 配置执行命令模板

    模板占位符: {src} 源文件目录, {dist} 产物目录, {impl} 入口文件路径。
    """

    def __init__(
        self,
        compilers: dict[str, str],
        executor: CommandExecutor | None = None,
        timeout: int | None = None,
    ) -> None:
        self.compilers = dict(compilers)
        self.executor = executor or LocalExecutor()
        self.timeout = timeout

    def build(self, component: Component, workdir: Path) -> Path:
        compiler = component.manifest.compiler or ""
        template = self.compilers.get(compiler)
        if template is None:
            raise BuildFailed(f"no command configured for compiler '{compiler}'")

        src = workdir / "src"
        dist = workdir / "dist"
        src.mkdir(parents=True, exist_ok=True)
        dist.mkdir(parents=True, exist_ok=True)
        for name, data in component.files().items():
            (src / name).write_bytes(data)

        cmd = template.format(src=src, dist=dist, impl=src / component.manifest.impl)
        logger.info("构建 %s (compiler=%s)", component.id, compiler)
        result = self.executor.execute(cmd, cwd=str(workdir), timeout=self.timeout)
        if not result.success:
            raise BuildFailed(
                f"{component.id} (rc={result.returncode}): {result.stderr[:500]}"
            )
        return dist
