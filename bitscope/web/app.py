"""scope HTTP 服务（基于 Flask）

把一个 scope 目录以 HttpRemote 能访问的形式暴露出来:
  GET  /api/scope          scope 描述
  POST /api/scope/fetch    {"ids": [...]} -> {"archives": [...]}
  POST /api/scope/upload   归档 -> {"scope": ..., "ids": [...]}

启动方式: bitscope serve --port 8888
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from bitscope.core.exceptions import BitScopeError
from bitscope.core.scope import Scope
from bitscope.web.responses import error_response

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 100 * 1024 * 1024  # 100 MB


def create_app(scope_path: str | Path, **scope_kwargs: Any) -> Flask:
    """应用工厂；启动时校验 scope 存在，之后每个请求重新加载"""
    scope = Scope.load(Path(scope_path), **scope_kwargs)

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH
    app.config["BITSCOPE_SCOPE_PATH"] = scope.path
    app.config["BITSCOPE_SCOPE_KWARGS"] = scope_kwargs

    from bitscope.web.scope_bp import scope_bp
    app.register_blueprint(scope_bp)

    @app.errorhandler(BitScopeError)
    def handle_scope_error(exc: BitScopeError):  # type: ignore[no-untyped-def]
        logger.info("请求失败: %s", exc)
        return error_response(exc)

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):  # type: ignore[no-untyped-def]
        """将所有 HTTP 异常统一返回 JSON"""
        return jsonify(error=exc.description), exc.code

    @app.errorhandler(Exception)
    def handle_generic_exception(exc: Exception):  # type: ignore[no-untyped-def]  # noqa: ARG001
        """捕获未处理异常，返回 500 JSON"""
        logger.exception("未处理的异常")
        return jsonify(error="internal server error"), 500

    logger.info("scope 服务已创建: %s (%s)", scope.name, scope.path)
    return app


def run_server(
    scope_path: str | Path, port: int = 8888, host: str = "127.0.0.1", **scope_kwargs: Any,
) -> None:
    app = create_app(scope_path, **scope_kwargs)
    logger.info("bitscope 服务已启动: http://%s:%d", host, port)
    app.run(host=host, port=port, debug=False)
