from __future__ import annotations

import re
from typing import Any

# Secret-ish patterns (best-effort). Keep conservative to avoid over-redaction.
_RE_BEARER = re.compile(r"(?i)\bBearer\s+[A-Za-z0-9._-]{10,}\b")
_RE_API_KEY = re.compile(r"\bsk-[A-Za-z0-9]{10,}\b")
_RE_DATA_URI = re.compile(r"data:(image/[A-Za-z0-9.+-]+);base64,[A-Za-z0-9+/=\s]+")

_MAX_LOG_STRING = 2000


def _collapse_data_uri(m: re.Match) -> str:
    return f"data:{m.group(1)};base64,<{len(m.group(0))} chars>"


def sanitize_text_for_log(text: str) -> str:
    """Redact credentials and collapse inline images so log lines stay small and safe."""
    s = str(text or "")
    if not s:
        return s
    s = _RE_DATA_URI.sub(_collapse_data_uri, s)
    s = _RE_BEARER.sub("Bearer ***", s)
    s = _RE_API_KEY.sub("sk-***", s)
    if len(s) > _MAX_LOG_STRING:
        s = s[:_MAX_LOG_STRING] + f"...(+{len(s) - _MAX_LOG_STRING} chars)"
    return s


def sanitize_value_for_log(value: Any) -> Any:
    if isinstance(value, str):
        return sanitize_text_for_log(value)
    if isinstance(value, list):
        return [sanitize_value_for_log(v) for v in value]
    if isinstance(value, dict):
        return {k: sanitize_value_for_log(v) for k, v in value.items()}
    return value
