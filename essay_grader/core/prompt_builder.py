"""
Prompt construction for essay grading.

A GradingRequest maps to exactly one payload variant:
- TextPrompt        -> text-generation backend (flat user message)
- MultimodalPrompt  -> multimodal backend (ordered text/image parts)

Deterministic and side-effect free; the system instruction comes from the
versioned prompt file and is identical for every call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from essay_grader.models.schemas import GradingRequest
from essay_grader.utils.prompt_manager import PromptManager, get_prompt_manager

PROMPT_NAME = "essay_grading.yaml"


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    # Data URI or URL, passed through untouched.
    image: str


ContentPart = Union[TextPart, ImagePart]


@dataclass(frozen=True)
class TextPrompt:
    system: str
    user: str
    meta: Dict[str, Any] = field(default_factory=dict, compare=False)

    use_multimodal = False


@dataclass(frozen=True)
class MultimodalPrompt:
    system: str
    parts: Tuple[ContentPart, ...]
    meta: Dict[str, Any] = field(default_factory=dict, compare=False)

    use_multimodal = True

    @property
    def image_count(self) -> int:
        return sum(1 for p in self.parts if isinstance(p, ImagePart))


PromptPayload = Union[TextPrompt, MultimodalPrompt]


class GradingPromptBuilder:
    def __init__(
        self,
        prompt_manager: Optional[PromptManager] = None,
        *,
        variant: Optional[str] = None,
    ) -> None:
        self._pm = prompt_manager or get_prompt_manager()
        self._variant = variant

    def _section(self, key: str, **kwargs: Any) -> str:
        return self._pm.render(PROMPT_NAME, key, variant=self._variant, **kwargs)

    @property
    def system_instruction(self) -> str:
        return self._pm.section(PROMPT_NAME, "system", variant=self._variant)

    @property
    def meta(self) -> Dict[str, Any]:
        return self._pm.meta(PROMPT_NAME, variant=self._variant)

    def build(self, request: GradingRequest) -> PromptPayload:
        if request.use_multimodal:
            return self._build_multimodal(request)
        return self._build_text(request)

    def _build_text(self, request: GradingRequest) -> TextPrompt:
        user = self._section(
            "text_user",
            topic=request.topic,
            material_text=request.material_text,
            word_limit=request.word_limit,
            answer_text=request.answer_text,
        )
        return TextPrompt(system=self.system_instruction, user=user, meta=self.meta)

    def _build_multimodal(self, request: GradingRequest) -> MultimodalPrompt:
        parts: List[ContentPart] = [
            TextPart(
                self._section(
                    "multimodal_header", topic=request.topic, word_limit=request.word_limit
                )
            ),
            TextPart(self._section("material_marker")),
        ]
        parts.extend(ImagePart(img) for img in request.material_images)
        if request.material_text:
            parts.append(
                TextPart(self._section("material_text", material_text=request.material_text))
            )

        parts.append(TextPart(self._section("answer_marker")))
        parts.extend(ImagePart(img) for img in request.answer_images)
        if request.answer_text:
            parts.append(
                TextPart(self._section("answer_text", answer_text=request.answer_text))
            )

        parts.append(TextPart(self._section("closing")))
        return MultimodalPrompt(
            system=self.system_instruction, parts=tuple(parts), meta=self.meta
        )


def build_prompt(request: GradingRequest, *, variant: Optional[str] = None) -> PromptPayload:
    return GradingPromptBuilder(variant=variant).build(request)
