"""Web 层统一响应辅助函数"""

from __future__ import annotations

from flask import Response, jsonify

from bitscope.core.exceptions import BitScopeError, ErrorKind

HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.SCOPE_NOT_FOUND: 404,
    ErrorKind.BIT_NOT_IN_SCOPE: 404,
    ErrorKind.MISSING_WORKSPACE_COMPONENT: 404,
    ErrorKind.COMPONENT_NOT_FOUND: 404,
    ErrorKind.VERSION_NOT_FOUND: 404,
    ErrorKind.MISSING_COMPONENT: 404,
    ErrorKind.REMOTE_NOT_FOUND: 404,
    ErrorKind.IMPORT_PENDING: 409,
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.BUILD_FAILED: 422,
    ErrorKind.REMOTE_ERROR: 502,
}


def ok(data: dict, status: int = 200) -> tuple[Response, int] | Response:
    """成功响应"""
    if status == 200:
        return jsonify(data)
    return jsonify(data), status


def bad_request(message: str) -> tuple[Response, int]:
    """请求参数错误"""
    return jsonify(error=message, kind=ErrorKind.VALIDATION_ERROR.value), 400


def error_response(exc: BitScopeError) -> tuple[Response, int]:
    """按错误种类映射 HTTP 状态码"""
    return jsonify(error=str(exc), kind=exc.code), HTTP_STATUS.get(exc.kind, 500)
