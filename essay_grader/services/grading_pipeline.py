"""
Grading pipeline: normalize -> build prompt -> call model -> extract, reporting
progress at every boundary.

The same `run()` serves streaming and single-shot callers; only the progress
sink differs. Every failure becomes the terminal `error` event. Cancellation
(caller disconnect) aborts the reporter and propagates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from essay_grader.core.prompt_builder import GradingPromptBuilder
from essay_grader.core.request_normalizer import normalize
from essay_grader.core.response_extractor import extract_grading_result
from essay_grader.models.schemas import GradingResult, ProgressStage
from essay_grader.services.model_gateway import ModelGateway
from essay_grader.services.progress import ProgressReporter
from essay_grader.utils.errors import (
    ErrorCode,
    ErrorReason,
    EssayGraderError,
    InputValidationError,
    build_error_payload,
)
from essay_grader.utils.observability import log_event
from essay_grader.utils.settings import Settings

logger = logging.getLogger(__name__)

BodyLoader = Callable[[], Awaitable[Any]]
GatewayFactory = Callable[[], ModelGateway]


class GradingPipeline:
    def __init__(
        self,
        *,
        gateway_factory: GatewayFactory,
        prompt_builder: Optional[GradingPromptBuilder] = None,
        require_topic: bool = False,
    ) -> None:
        self._gateway_factory = gateway_factory
        self._prompt_builder = prompt_builder or GradingPromptBuilder()
        self._require_topic = require_topic

    @classmethod
    def from_settings(cls, settings: Settings) -> "GradingPipeline":
        return cls(
            gateway_factory=lambda: ModelGateway.from_settings(settings),
            prompt_builder=GradingPromptBuilder(variant=settings.grading_prompt_variant),
            require_topic=settings.require_topic,
        )

    async def _load_body(self, load_body: BodyLoader) -> Any:
        try:
            return await load_body()
        except ValueError as e:
            # json.JSONDecodeError and UnicodeDecodeError are both ValueError.
            raise InputValidationError(
                "Request body is not valid JSON",
                reason=ErrorReason.INVALID_BODY,
                details={"error": str(e)},
            ) from e

    async def run(
        self,
        load_body: BodyLoader,
        reporter: ProgressReporter,
        *,
        request_id: Optional[str] = None,
    ) -> Optional[GradingResult]:
        started_m = time.monotonic()
        try:
            await reporter.advance(ProgressStage.RECEIVED)
            # Credential first: misconfiguration surfaces before any body parsing or I/O.
            gateway = self._gateway_factory()

            await reporter.advance(ProgressStage.VALIDATING)
            request = normalize(await self._load_body(load_body), require_topic=self._require_topic)
            payload = self._prompt_builder.build(request)
            log_event(
                logger,
                "grade_prompt_built",
                request_id=request_id,
                use_multimodal=payload.use_multimodal,
                prompt_id=payload.meta.get("id"),
                prompt_version=payload.meta.get("version"),
                prompt_variant=payload.meta.get("variant"),
                material_images=len(request.material_images),
                answer_images=len(request.answer_images),
                answer_chars=len(request.answer_text),
                word_limit=request.word_limit,
            )

            await reporter.advance(
                ProgressStage.CALLING_MODEL,
                message="识别图片并调用模型中" if payload.use_multimodal else None,
            )
            reply = await gateway.generate(payload, request_id=request_id)
            await reporter.advance(ProgressStage.MODEL_RESPONDED)

            await reporter.advance(ProgressStage.PARSING)
            result = extract_grading_result(reply.text)
            warnings = result.contract_warnings()
            if warnings:
                log_event(
                    logger,
                    "grade_contract_warnings",
                    level="warning",
                    request_id=request_id,
                    warnings=warnings,
                )

            await reporter.succeed(result)
            log_event(
                logger,
                "grade_done",
                request_id=request_id,
                use_multimodal=payload.use_multimodal,
                model=reply.model,
                total_score=result.total_score,
                elapsed_ms=int((time.monotonic() - started_m) * 1000),
            )
            return result

        except asyncio.CancelledError:
            reporter.abort()
            log_event(
                logger,
                "grade_aborted",
                level="warning",
                request_id=request_id,
                stage=getattr(reporter.stage, "value", None),
                elapsed_ms=int((time.monotonic() - started_m) * 1000),
            )
            raise

        except EssayGraderError as e:
            log_event(
                logger,
                "grade_failed",
                level="warning" if e.status_code < 500 else "error",
                request_id=request_id,
                stage=getattr(reporter.stage, "value", None),
                error_type=e.__class__.__name__,
                reason=getattr(e.reason, "value", None),
                error=e.message,
                elapsed_ms=int((time.monotonic() - started_m) * 1000),
            )
            await reporter.fail(
                build_error_payload(
                    code=e.code,
                    message=e.message,
                    details=e.payload_details(),
                    request_id=request_id,
                ),
                status_code=e.status_code,
            )
            return None

        except Exception as e:
            logger.error("Grading pipeline failed: %s", e, exc_info=True)
            log_event(
                logger,
                "grade_failed",
                level="error",
                request_id=request_id,
                stage=getattr(reporter.stage, "value", None),
                error_type=e.__class__.__name__,
                elapsed_ms=int((time.monotonic() - started_m) * 1000),
            )
            # Internal error text stays in the logs only.
            await reporter.fail(
                build_error_payload(
                    code=ErrorCode.SERVICE_ERROR,
                    message="Internal server error",
                    request_id=request_id,
                ),
                status_code=500,
            )
            return None
