"""Scope 传输 API Blueprint（HttpRemote 的服务端）"""

from __future__ import annotations

import asyncio

from flask import Blueprint, Response, current_app, request

from bitscope.core.bit_id import BitId
from bitscope.core.exceptions import RemoteError
from bitscope.core.remotes import Archive
from bitscope.core.scope import Scope
from bitscope.web.responses import bad_request, ok

scope_bp = Blueprint("scope", __name__, url_prefix="/api/scope")


def _scope() -> Scope:
    cfg = current_app.config
    return Scope.load(cfg["BITSCOPE_SCOPE_PATH"], **cfg["BITSCOPE_SCOPE_KWARGS"])


@scope_bp.route("", methods=["GET"])
def describe() -> Response:
    return ok(_scope().describe())


@scope_bp.route("/fetch", methods=["POST"])
def fetch() -> tuple[Response, int] | Response:
    body = request.get_json(silent=True) or {}
    raw_ids = body.get("ids")
    if not isinstance(raw_ids, list) or not raw_ids:
        return bad_request("需要提供 ids 列表")
    ids = [BitId.parse(str(raw)) for raw in raw_ids]
    archives = asyncio.run(_scope().fetch(ids))
    return ok({"archives": [a.to_json() for a in archives]})


@scope_bp.route("/upload", methods=["POST"])
def upload() -> tuple[Response, int] | Response:
    body = request.get_json(silent=True) or {}
    if "id" not in body or "contents" not in body:
        return bad_request("需要提供 id 和 contents")
    try:
        archive = Archive.from_json(body)
    except RemoteError as e:
        return bad_request(str(e))
    scope = _scope()
    stored = asyncio.run(scope.upload(archive.id, archive.contents))
    return ok({"scope": scope.name, "ids": [str(c.id) for c in stored]})
