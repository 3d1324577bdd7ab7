"""
Progress reporting for one grading call.

State machine (idle is never emitted):

    idle -> received -> validating -> calling_model -> model_responded -> parsing -> done
                 \\___________________________ any non-terminal ___________________/-> error

Transitions only move forward; `percent` never decreases; exactly one terminal
event (`done`/`error`, percent=100) unless the call is aborted, in which case no
terminal event is emitted. The sink is closed exactly once on every path.

Sinks:
- QueueProgressSink: incremental delivery (server-sent events)
- TerminalProgressSink: keeps only the terminal event (single-shot JSON response)
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, Optional, Protocol

from essay_grader.models.schemas import (
    TERMINAL_STAGES,
    GradingResult,
    ProgressEvent,
    ProgressStage,
)

_STAGE_ORDER = [
    ProgressStage.RECEIVED,
    ProgressStage.VALIDATING,
    ProgressStage.CALLING_MODEL,
    ProgressStage.MODEL_RESPONDED,
    ProgressStage.PARSING,
    ProgressStage.DONE,
]

STAGE_PERCENT: Dict[ProgressStage, int] = {
    ProgressStage.RECEIVED: 5,
    ProgressStage.VALIDATING: 10,
    ProgressStage.CALLING_MODEL: 30,
    ProgressStage.MODEL_RESPONDED: 80,
    ProgressStage.PARSING: 90,
    ProgressStage.DONE: 100,
    ProgressStage.ERROR: 100,
}

STAGE_MESSAGE: Dict[ProgressStage, str] = {
    ProgressStage.RECEIVED: "已接收请求",
    ProgressStage.VALIDATING: "校验输入中",
    ProgressStage.CALLING_MODEL: "调用模型中",
    ProgressStage.MODEL_RESPONDED: "模型已返回",
    ProgressStage.PARSING: "整理输出中",
    ProgressStage.DONE: "批改完成",
    ProgressStage.ERROR: "批改失败",
}


class ProgressStateError(RuntimeError):
    """Illegal progress transition (programming error)."""


class ProgressSink(Protocol):
    async def emit(self, event: ProgressEvent) -> None: ...

    def close(self) -> None: ...


class QueueProgressSink:
    """Hands events to a consumer task; `events()` ends when the sink is closed."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[ProgressEvent]] = asyncio.Queue()
        self.closed = False

    async def emit(self, event: ProgressEvent) -> None:
        await self._queue.put(event)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class TerminalProgressSink:
    """Batched binding: drops intermediate events and keeps the terminal one."""

    def __init__(self) -> None:
        self.terminal: Optional[ProgressEvent] = None
        self.closed = False

    async def emit(self, event: ProgressEvent) -> None:
        if event.is_terminal:
            self.terminal = event

    def close(self) -> None:
        self.closed = True


class ProgressReporter:
    def __init__(self, sink: ProgressSink) -> None:
        self._sink = sink
        self.stage: Optional[ProgressStage] = None  # idle
        self.percent = 0
        self.finished = False

    def _check_open(self) -> None:
        if self.finished:
            raise ProgressStateError(f"progress already finished at {self.stage}")

    async def _emit(
        self,
        stage: ProgressStage,
        *,
        message: Optional[str],
        percent: Optional[int],
        **outcome: Any,
    ) -> ProgressEvent:
        pct = STAGE_PERCENT[stage] if percent is None else int(percent)
        pct = max(self.percent, min(100, pct))
        if stage in TERMINAL_STAGES:
            pct = 100
        event = ProgressEvent(
            stage=stage,
            percent=pct,
            message=message or STAGE_MESSAGE[stage],
            **outcome,
        )
        self.stage = stage
        self.percent = pct
        await self._sink.emit(event)
        return event

    async def advance(
        self,
        stage: ProgressStage,
        *,
        message: Optional[str] = None,
        percent: Optional[int] = None,
    ) -> ProgressEvent:
        self._check_open()
        if stage in TERMINAL_STAGES:
            raise ProgressStateError("use succeed()/fail() for terminal stages")
        current = _STAGE_ORDER.index(self.stage) if self.stage is not None else -1
        if _STAGE_ORDER.index(stage) <= current:
            raise ProgressStateError(f"cannot move from {self.stage} to {stage}")
        return await self._emit(stage, message=message, percent=percent)

    async def succeed(self, result: GradingResult, *, message: Optional[str] = None) -> ProgressEvent:
        self._check_open()
        self.finished = True
        try:
            return await self._emit(ProgressStage.DONE, message=message, percent=100, result=result)
        finally:
            self._sink.close()

    async def fail(
        self,
        error: Dict[str, Any],
        *,
        status_code: int,
        message: Optional[str] = None,
    ) -> ProgressEvent:
        self._check_open()
        self.finished = True
        try:
            return await self._emit(
                ProgressStage.ERROR,
                message=message,
                percent=100,
                error=error,
                status_code=status_code,
            )
        finally:
            self._sink.close()

    def abort(self) -> None:
        """Caller went away: release the sink without a terminal event."""
        if self.finished:
            return
        self.finished = True
        self._sink.close()
