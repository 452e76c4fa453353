# Reference knowledge base: real-world object dimensions grouped by reliability tier.
# Pure data: replace the JSON document to change it, no code involved.

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from apex_height.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferenceKnowledgeBase:
    version: str
    tiers: Mapping[str, Mapping[str, Any]]

    @property
    def tier_names(self) -> list[str]:
        """Tier names, most reliable first."""
        return list(self.tiers)

    def to_prompt_dict(self) -> dict[str, Any]:
        return {name: dict(entries) for name, entries in self.tiers.items()}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ReferenceKnowledgeBase:
        if not isinstance(raw, dict):
            raise ValueError("knowledge base must be a JSON object")
        tiers = raw.get("tiers")
        if not isinstance(tiers, dict) or not tiers:
            raise ValueError("knowledge base must define a non-empty 'tiers' object")
        for name, entries in tiers.items():
            if not isinstance(entries, dict):
                raise ValueError(f"tier {name!r} must map object names to dimensions")
        return cls(
            version=str(raw.get("version", "unversioned")),
            tiers=MappingProxyType({name: MappingProxyType(dict(entries)) for name, entries in tiers.items()}),
        )


def load_knowledge_base(path: str | Path) -> ReferenceKnowledgeBase:
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        kb = ReferenceKnowledgeBase.from_dict(raw)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot load knowledge base from {path}: {exc}") from exc

    logger.info(
        "Loaded knowledge base %s (%d tiers, %d objects) from %s",
        kb.version, len(kb.tiers), sum(len(t) for t in kb.tiers.values()), path,
    )
    return kb
