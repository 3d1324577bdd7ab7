"""
Versioned prompt files.

A prompt file is YAML: metadata (`id`, `version`, `language`, `purpose`) plus
named text sections. Sections are Jinja2 templates rendered with StrictUndefined,
so a missing variable fails loudly instead of leaving a hole in the prompt.

Variants live next to the base file as `<name>__<variant>.yaml`; an unknown
variant falls back to the base file.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from jinja2 import StrictUndefined, Template

PROMPTS_DIR = Path(__file__).resolve().parents[1] / "prompts"

_META_KEYS = ("id", "version", "language", "purpose")


class PromptManager:
    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)
        self._files: Dict[str, Dict[str, Any]] = {}

    def _resolve_name(self, name: str, *, variant: Optional[str]) -> str:
        v = (variant or "").strip()
        if not v:
            return name
        stem, dot, ext = name.rpartition(".")
        candidate = f"{stem}__{v}.{ext}" if dot else f"{name}__{v}"
        return candidate if (self.base_dir / candidate).exists() else name

    def _load(self, name: str, *, variant: Optional[str] = None) -> Dict[str, Any]:
        resolved = self._resolve_name(name, variant=variant)
        if resolved not in self._files:
            text = (self.base_dir / resolved).read_text(encoding="utf-8")
            self._files[resolved] = yaml.safe_load(text) or {}
        return self._files[resolved]

    def section(self, name: str, key: str, *, variant: Optional[str] = None) -> str:
        """Section text as written in the file (no rendering)."""
        value = self._load(name, variant=variant).get(key)
        if value is None:
            raise KeyError(f"prompt {name!r} has no section {key!r}")
        return str(value)

    def render(
        self, name: str, key: str = "template", *, variant: Optional[str] = None, **kwargs: Any
    ) -> str:
        template = Template(self.section(name, key, variant=variant), undefined=StrictUndefined)
        return template.render(**kwargs)

    def meta(self, name: str, *, variant: Optional[str] = None) -> Dict[str, Any]:
        data = self._load(name, variant=variant)
        out = {k: data.get(k) for k in _META_KEYS}
        # Only a variant whose file exists counts; otherwise the base file was used.
        used_variant = self._resolve_name(name, variant=variant) != name
        out["variant"] = (variant or "").strip() if used_variant else None
        return out


@lru_cache(maxsize=1)
def get_prompt_manager() -> PromptManager:
    return PromptManager(PROMPTS_DIR)
