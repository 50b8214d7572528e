"""scope 元数据文件 scope.json: {"name": ..., "remotes": {alias: address}}"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from bitscope.core.exceptions import ValidationError
from bitscope.utils.fs import load_json, save_json

logger = logging.getLogger(__name__)

SCOPE_JSON = "scope.json"


def get_path(scope_path: Path) -> Path:
    return scope_path / SCOPE_JSON


@dataclass
class ScopeJson:
    name: str = ""
    remotes: dict[str, str] = field(default_factory=dict)

    def add_remote(self, alias: str, address: str) -> None:
        self.remotes[alias] = address

    def remove_remote(self, alias: str) -> bool:
        return self.remotes.pop(alias, None) is not None

    def to_dict(self) -> dict:
        return {"name": self.name, "remotes": dict(sorted(self.remotes.items()))}

    def write(self, scope_path: Path) -> None:
        save_json(get_path(scope_path), self.to_dict())

    @classmethod
    def load(cls, scope_path: Path) -> ScopeJson:
        path = get_path(scope_path)
        try:
            data = load_json(path)
        except json.JSONDecodeError as e:
            raise ValidationError(f"{path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError(f"{path} must contain an object")
        return cls(name=str(data.get("name") or ""), remotes=dict(data.get("remotes") or {}))
