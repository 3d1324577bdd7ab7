import re
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

Number = Union[int, float]

DEFAULT_TOPIC = "未提供题目"

# Fixed rubric: (subject, fullMark), order matters.
RUBRIC_DIMENSIONS: Tuple[Tuple[str, int], ...] = (
    ("要点全面性", 40),
    ("语言精炼度", 30),
    ("逻辑结构", 20),
    ("格式规范", 10),
)

POINT_CHECKLIST_MIN = 8
POINT_CHECKLIST_MAX = 12
POINT_REASON_MAX_CHARS = 30

_RE_PLACEHOLDER = re.compile(r"\{[^{}\n]{1,24}\}")


# --- Input ---
class GradingRequest(BaseModel):
    """Canonical grading input built by the request normalizer. One per call."""

    model_config = ConfigDict(frozen=True)

    topic: str = DEFAULT_TOPIC
    material_text: str = ""
    material_images: Tuple[str, ...] = ()
    answer_text: str = ""
    answer_images: Tuple[str, ...] = ()
    word_limit: Optional[int] = Field(None, gt=0)

    @property
    def use_multimodal(self) -> bool:
        """Any image, on either side, needs the vision backend."""
        return bool(self.answer_images) or bool(self.material_images)


# --- Output ---
class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )


class Dimension(_CamelModel):
    subject: Optional[str] = None
    # The radar chart used `A` as the score key in older prompt versions.
    score: Optional[Number] = Field(None, validation_alias=AliasChoices("score", "A"))
    full_mark: Optional[Number] = None


class GradeComment(_CamelModel):
    title: Optional[str] = None
    content: Optional[str] = None
    type: Optional[str] = None


class CommentType(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


class Annotation(_CamelModel):
    original_text: Optional[str] = None
    comment: Optional[str] = None


class PointCheckItem(_CamelModel):
    material_point: Optional[str] = None
    covered: Optional[bool] = None
    reason: Optional[str] = None


class GradingReport(_CamelModel):
    """
    Typed view of the grading JSON.

    Shape conformance is a prompt-level contract: every field is optional here and
    unknown fields are kept. Use `contract_warnings()` to see deviations.
    """

    total_score: Optional[Number] = None
    rank_percentile: Optional[Number] = None
    dimensions: Optional[List[Dimension]] = None
    comments: Optional[List[GradeComment]] = None
    advice: Optional[str] = None
    annotations: Optional[List[Annotation]] = None
    point_checklist: Optional[List[PointCheckItem]] = None
    report_markdown: Optional[str] = None

    def contract_warnings(self) -> List[str]:
        warnings: List[str] = []

        dims = self.dimensions or []
        if len(dims) != len(RUBRIC_DIMENSIONS):
            warnings.append(f"dimensions: expected {len(RUBRIC_DIMENSIONS)}, got {len(dims)}")
        for i, (dim, (subject, full_mark)) in enumerate(zip(dims, RUBRIC_DIMENSIONS)):
            if dim.subject != subject:
                warnings.append(f"dimensions[{i}].subject: expected {subject}, got {dim.subject}")
            if dim.full_mark != full_mark:
                warnings.append(f"dimensions[{i}].fullMark: expected {full_mark}, got {dim.full_mark}")
            if dim.score is None:
                warnings.append(f"dimensions[{i}].score missing")
            elif dim.full_mark is not None and dim.score > dim.full_mark:
                warnings.append(f"dimensions[{i}].score {dim.score} exceeds fullMark {dim.full_mark}")

        scores = [d.score for d in dims if d.score is not None]
        if self.total_score is None:
            warnings.append("totalScore missing")
        elif dims and len(scores) == len(dims) and sum(scores) != self.total_score:
            warnings.append(f"totalScore {self.total_score} != sum of dimensions {sum(scores)}")

        comments = self.comments or []
        types = sorted(str(c.type) for c in comments)
        if types != [CommentType.NEGATIVE.value, CommentType.POSITIVE.value]:
            warnings.append(f"comments: expected one positive and one negative, got {types}")

        if self.point_checklist is not None:
            n = len(self.point_checklist)
            if n < POINT_CHECKLIST_MIN or n > POINT_CHECKLIST_MAX:
                warnings.append(
                    f"pointChecklist: expected {POINT_CHECKLIST_MIN}-{POINT_CHECKLIST_MAX} items, got {n}"
                )
            for i, item in enumerate(self.point_checklist):
                if item.reason and len(item.reason) > POINT_REASON_MAX_CHARS:
                    warnings.append(f"pointChecklist[{i}].reason longer than {POINT_REASON_MAX_CHARS} chars")

        if self.report_markdown:
            leftover = _RE_PLACEHOLDER.findall(self.report_markdown)
            if leftover:
                warnings.append(f"reportMarkdown has unfilled placeholders: {leftover[:3]}")
        return warnings


def _rename_legacy_score(data: Dict[str, Any]) -> Dict[str, Any]:
    dims = data.get("dimensions")
    if not isinstance(dims, list):
        return data
    fixed = [
        {("score" if k == "A" else k): v for k, v in d.items()}
        if isinstance(d, dict) and "A" in d and "score" not in d
        else d
        for d in dims
    ]
    return {**data, "dimensions": fixed}


class GradingResult(BaseModel):
    """
    The grading JSON exactly as the model returned it (only the legacy `A` score
    key is renamed to `score`).

    Any JSON object is a result. `report` is the typed view when the object fits
    the expected shape; otherwise it is None and `shape_errors` says why.
    """

    data: Dict[str, Any] = Field(default_factory=dict)

    _report: Optional[GradingReport] = PrivateAttr(default=None)
    _shape_errors: List[str] = PrivateAttr(default_factory=list)

    @field_validator("data")
    @classmethod
    def _legacy_keys(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        return _rename_legacy_score(value)

    def model_post_init(self, __context: Any) -> None:
        try:
            self._report = GradingReport.model_validate(self.data)
        except ValidationError as e:
            self._shape_errors = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors(include_url=False)
            ]

    @property
    def report(self) -> Optional[GradingReport]:
        return self._report

    @property
    def shape_errors(self) -> List[str]:
        return list(self._shape_errors)

    @property
    def total_score(self) -> Any:
        return self.data.get("totalScore")

    def to_payload(self) -> Dict[str, Any]:
        return dict(self.data)

    def contract_warnings(self) -> List[str]:
        if self._report is None:
            return [f"shape: {e}" for e in self._shape_errors]
        return self._report.contract_warnings()


# --- Progress ---
class ProgressStage(str, Enum):
    RECEIVED = "received"
    VALIDATING = "validating"
    CALLING_MODEL = "calling_model"
    MODEL_RESPONDED = "model_responded"
    PARSING = "parsing"
    DONE = "done"
    ERROR = "error"


TERMINAL_STAGES = frozenset({ProgressStage.DONE, ProgressStage.ERROR})


class ProgressEvent(BaseModel):
    """
    One lifecycle update. Terminal events also carry the outcome (`result` or
    `error` + `status_code`); those fields never appear in the serialized progress payload.
    """

    stage: ProgressStage
    percent: int = Field(..., ge=0, le=100)
    message: str

    result: Optional[GradingResult] = Field(None, exclude=True)
    error: Optional[Dict[str, Any]] = Field(None, exclude=True)
    status_code: Optional[int] = Field(None, exclude=True)

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES
