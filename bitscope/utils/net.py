"""网络工具: URL 安全校验与远端地址分类"""

from __future__ import annotations

from urllib.parse import urlparse

from bitscope.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https"))


def is_http_address(address: str) -> bool:
    """远端地址是否为 http(s) URL（否则视为本地 scope 路径）"""
    return urlparse(address).scheme in _ALLOWED_SCHEMES


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"unsupported URL scheme '{parsed.scheme}'{label}: {url}"
        )
