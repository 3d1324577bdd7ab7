"""
Request normalization: raw JSON body -> GradingRequest.

Inbound keys (camelCase, as sent by the web client):
    text, image (legacy single image), images, topic, material, materialImages, wordLimit

Pure transformation; raises InputValidationError for unusable requests.
"""

from __future__ import annotations

import math
from typing import Any, List, Optional

from essay_grader.models.schemas import DEFAULT_TOPIC, GradingRequest
from essay_grader.utils.errors import ErrorReason, InputValidationError


def _clean_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _clean_images(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def parse_word_limit(value: Any) -> Optional[int]:
    """Numeric parse; anything that is not a finite number >= 1 is dropped."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number) or number < 1:
        return None
    return int(number)


def normalize(raw: Any, *, require_topic: bool = False) -> GradingRequest:
    body = raw if isinstance(raw, dict) else {}

    topic = _clean_text(body.get("topic"))
    material_text = _clean_text(body.get("material"))
    material_images = _clean_images(body.get("materialImages"))
    answer_text = _clean_text(body.get("text"))
    answer_images = _clean_images(body.get("images"))
    legacy_image = _clean_text(body.get("image"))
    if legacy_image:
        answer_images.insert(0, legacy_image)

    if not material_text and not material_images:
        raise InputValidationError("Missing material", reason=ErrorReason.MISSING_MATERIAL)
    if not answer_text and not answer_images:
        raise InputValidationError("Missing text or image", reason=ErrorReason.MISSING_ANSWER)
    if require_topic and not topic:
        raise InputValidationError("Missing topic", reason=ErrorReason.MISSING_TOPIC)

    return GradingRequest(
        topic=topic or DEFAULT_TOPIC,
        material_text=material_text,
        material_images=tuple(material_images),
        answer_text=answer_text,
        answer_images=tuple(answer_images),
        word_limit=parse_word_limit(body.get("wordLimit")),
    )
