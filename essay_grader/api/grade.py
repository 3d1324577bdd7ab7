from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from essay_grader.models.schemas import ProgressEvent, ProgressStage
from essay_grader.services.grading_pipeline import GradingPipeline
from essay_grader.services.progress import (
    ProgressReporter,
    QueueProgressSink,
    TerminalProgressSink,
)
from essay_grader.utils.errors import ErrorCode, build_error_payload
from essay_grader.utils.observability import get_request_id_from_headers, log_event
from essay_grader.utils.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_pipeline() -> GradingPipeline:
    return GradingPipeline.from_settings(get_settings())


def _request_id(request: Request) -> Optional[str]:
    return getattr(
        getattr(request, "state", None), "request_id", None
    ) or get_request_id_from_headers(request.headers)


def _sse_event(event: str, data: str) -> bytes:
    # Multi-line bodies become several `data:` lines; clients join them back with "\n".
    lines = "".join(f"data: {line}\n" for line in str(data).split("\n"))
    return f"event: {event}\n{lines}\n".encode("utf-8")


def _sse_json(event: str, payload: Any) -> bytes:
    return _sse_event(event, json.dumps(payload, ensure_ascii=False, separators=(",", ":")))


def _encode_progress(event: ProgressEvent) -> list[bytes]:
    """
    Frames for one progress event:
    - done:  `result` then the terminal `progress`
    - error: the terminal `progress` then `error`
    """
    progress = _sse_event("progress", event.model_dump_json())
    if event.stage == ProgressStage.DONE and event.result is not None:
        return [_sse_json("result", event.result.to_payload()), progress]
    if event.stage == ProgressStage.ERROR:
        error: Dict[str, Any] = dict(event.error or {})
        if event.status_code is not None:
            error["status"] = event.status_code
        return [progress, _sse_json("error", error)]
    return [progress]


def _terminal_response(event: Optional[ProgressEvent], request_id: Optional[str]) -> JSONResponse:
    if event is not None and event.stage == ProgressStage.DONE and event.result is not None:
        return JSONResponse(status_code=200, content=event.result.to_payload())
    if event is not None and event.stage == ProgressStage.ERROR:
        return JSONResponse(status_code=int(event.status_code or 500), content=event.error or {})
    return JSONResponse(
        status_code=500,
        content=build_error_payload(
            code=ErrorCode.SERVICE_ERROR,
            message="Internal server error",
            request_id=request_id,
        ),
    )


@router.post("/grade")
async def grade(request: Request):
    """Single-shot grading: the terminal event becomes the JSON response."""
    request_id = _request_id(request)
    # Buffer raw bytes only; JSON parsing happens inside the pipeline after the credential check.
    await request.body()
    log_event(logger, "grade_request", request_id=request_id, mode="json")

    sink = TerminalProgressSink()
    await get_pipeline().run(request.json, ProgressReporter(sink), request_id=request_id)
    return _terminal_response(sink.terminal, request_id)


async def grade_event_stream(
    pipeline: GradingPipeline,
    request: Request,
    *,
    request_id: Optional[str],
) -> AsyncIterator[bytes]:
    """
    SSE stream for one grading call:
    - progress events (received -> ... -> done|error)
    - result (success) / error (failure)
    If the client goes away the pipeline task is cancelled (including the upstream call).
    """
    sink = QueueProgressSink()
    task = asyncio.create_task(
        pipeline.run(request.json, ProgressReporter(sink), request_id=request_id)
    )
    try:
        async for event in sink.events():
            for chunk in _encode_progress(event):
                yield chunk
        await task
    finally:
        if not task.done():
            task.cancel()
            log_event(logger, "grade_stream_closed_early", level="warning", request_id=request_id)


@router.post("/grade-stream")
async def grade_stream(request: Request):
    request_id = _request_id(request)
    # Read the body before streaming starts; the response must not compete for receive().
    await request.body()
    log_event(logger, "grade_request", request_id=request_id, mode="stream")
    return StreamingResponse(
        grade_event_stream(get_pipeline(), request, request_id=request_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
