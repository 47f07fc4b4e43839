from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

from .metadata import parse_metadata


@dataclass(frozen=True)
class ScriptRecord:
    path: str
    content: str
    enabled: bool
    description: str
    page_rules: Tuple[str, ...]

    @classmethod
    def from_content(cls, path: str, content: str) -> "ScriptRecord":
        meta = parse_metadata(content)
        return cls(
            path=path,
            content=content,
            enabled=meta.enabled,
            description=meta.description,
            page_rules=meta.page_rules,
        )

    @property
    def name(self) -> str:
        return self.path

    def to_message(self) -> Tuple[str, str, bool, str, Tuple[str, ...]]:
        return (self.path, self.content, self.enabled, self.description, self.page_rules)

    @classmethod
    def from_message(cls, args: Sequence) -> "ScriptRecord":
        path, content, enabled, description, page_rules = args
        return cls(
            path=str(path),
            content=str(content),
            enabled=bool(enabled),
            description=str(description),
            page_rules=tuple(page_rules),
        )
