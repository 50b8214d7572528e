"""统一异常体系

所有业务异常继承 BitScopeError，错误种类是封闭枚举 ErrorKind。
每个种类对应一条固定消息（MESSAGES），CLI 据此映射退出码，Web 层映射 HTTP 状态码，
测试可直接匹配消息文本。
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """错误种类（封闭集合）"""

    SCOPE_NOT_FOUND = "ScopeNotFound"
    BIT_NOT_IN_SCOPE = "BitNotInScope"
    MISSING_WORKSPACE_COMPONENT = "MissingWorkspaceComponent"
    COMPONENT_NOT_FOUND = "ComponentNotFound"
    VERSION_NOT_FOUND = "VersionNotFound"
    IMPORT_PENDING = "ImportPending"
    VALIDATION_ERROR = "ValidationError"
    MISSING_COMPONENT = "MissingComponent"
    REMOTE_NOT_FOUND = "RemoteNotFound"
    REMOTE_ERROR = "RemoteError"
    BUILD_FAILED = "BuildFailed"


IMPORT_PENDING_MSG = (
    "your workspace has exported components that are missing from the local scope. "
    "please run `bitscope import` to restore them before tagging or exporting"
)

MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.SCOPE_NOT_FOUND: "scope not found. to create a new scope, please use `bitscope init`",
    ErrorKind.BIT_NOT_IN_SCOPE: "component does not exist in scope",
    ErrorKind.MISSING_WORKSPACE_COMPONENT: "component is not tracked by the workspace",
    ErrorKind.COMPONENT_NOT_FOUND: "component has no versions in scope",
    ErrorKind.VERSION_NOT_FOUND: "component version does not exist in scope",
    ErrorKind.IMPORT_PENDING: IMPORT_PENDING_MSG,
    ErrorKind.VALIDATION_ERROR: "validation failed",
    ErrorKind.MISSING_COMPONENT: "component is missing from the scope source store",
    ErrorKind.REMOTE_NOT_FOUND: "remote scope is not configured",
    ErrorKind.REMOTE_ERROR: "remote scope request failed",
    ErrorKind.BUILD_FAILED: "component build failed",
}

# 退出码（0 保留给成功，1/2 留给 click 自身）
EXIT_CODES: dict[ErrorKind, int] = {
    ErrorKind.SCOPE_NOT_FOUND: 10,
    ErrorKind.BIT_NOT_IN_SCOPE: 11,
    ErrorKind.MISSING_WORKSPACE_COMPONENT: 12,
    ErrorKind.COMPONENT_NOT_FOUND: 13,
    ErrorKind.VERSION_NOT_FOUND: 14,
    ErrorKind.IMPORT_PENDING: 15,
    ErrorKind.VALIDATION_ERROR: 16,
    ErrorKind.MISSING_COMPONENT: 17,
    ErrorKind.REMOTE_NOT_FOUND: 18,
    ErrorKind.REMOTE_ERROR: 19,
    ErrorKind.BUILD_FAILED: 20,
}


class BitScopeError(Exception):
    """框架基础异常

    message 固定取自 MESSAGES[kind]；detail 携带出错的标识符等上下文。
    """

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        text = self.message if not detail else f"{self.message}: {detail}"
        super().__init__(text)

    @property
    def message(self) -> str:
        return MESSAGES[self.kind]

    @property
    def code(self) -> str:
        return self.kind.value

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.kind]


class ScopeNotFound(BitScopeError):
    """向上查找直到根目录都没有 scope 标记"""

    kind = ErrorKind.SCOPE_NOT_FOUND


class BitNotInScope(BitScopeError):
    """本地标识符在依赖图中没有记录"""

    kind = ErrorKind.BIT_NOT_IN_SCOPE


class MissingWorkspaceComponent(BitScopeError):
    """按标识符查看组件，但工作区没有对应条目"""

    kind = ErrorKind.MISSING_WORKSPACE_COMPONENT


class ComponentNotFound(BitScopeError):
    """版本解析时历史为空"""

    kind = ErrorKind.COMPONENT_NOT_FOUND


class VersionNotFound(BitScopeError):
    """指定的版本不在历史中"""

    kind = ErrorKind.VERSION_NOT_FOUND


class ImportPending(BitScopeError):
    """工作区认为已导出，但 scope 元数据缺失，拒绝修改操作"""

    kind = ErrorKind.IMPORT_PENDING


class ValidationError(BitScopeError):
    """输入数据校验失败（清单、标识符、版本号、远端地址）"""

    kind = ErrorKind.VALIDATION_ERROR

    def __init__(self, detail: str = "", details: list[str] | None = None) -> None:
        super().__init__(detail)
        self.details = details or []


class MissingComponent(BitScopeError):
    """源存储区中找不到组件"""

    kind = ErrorKind.MISSING_COMPONENT


class RemoteNotFound(BitScopeError):
    """合并后的远端注册表中没有该别名"""

    kind = ErrorKind.REMOTE_NOT_FOUND


class RemoteError(BitScopeError):
    """与远端 scope 通信失败（不重试）"""

    kind = ErrorKind.REMOTE_ERROR


class BuildFailed(BitScopeError):
    """清单声明的编译器执行失败"""

    kind = ErrorKind.BUILD_FAILED
