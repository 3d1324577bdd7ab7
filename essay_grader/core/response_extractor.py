from __future__ import annotations

import json
from typing import Any, Dict, Optional

from essay_grader.models.schemas import GradingResult
from essay_grader.utils.errors import ErrorReason, ExtractionError


def extract_json_block(text: str) -> Optional[str]:
    """
    Slice from the first `{` to the last `}` (inclusive).
    Handles prose or ```json fences around the object; returns None when no span exists.
    """
    s = str(text or "")
    start = s.find("{")
    end = s.rfind("}")
    if start < 0 or end < 0 or end <= start:
        return None
    return s[start : end + 1]


def parse_json_object(text: str) -> Dict[str, Any]:
    block = extract_json_block(text)
    if block is None:
        raise ExtractionError(
            "Invalid model response", reason=ErrorReason.NO_JSON_FOUND, raw=str(text or "")
        )
    try:
        obj = json.loads(block)
    except json.JSONDecodeError as e:
        raise ExtractionError(
            f"Invalid model response: {e}",
            reason=ErrorReason.INVALID_JSON,
            raw=str(text),
            details={"parse_error": str(e)},
        ) from e
    return obj


def extract_grading_result(text: str) -> GradingResult:
    """
    Recover the grading JSON from a free-form model reply.

    Only locating and parsing the object can fail. Field types are not checked
    here; mismatches show up in `GradingResult.contract_warnings()`.
    """
    return GradingResult(data=parse_json_object(text))
