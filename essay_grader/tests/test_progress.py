import asyncio

import pytest

from essay_grader.models.schemas import GradingResult, ProgressStage
from essay_grader.services.progress import (
    STAGE_PERCENT,
    ProgressReporter,
    ProgressStateError,
    QueueProgressSink,
    TerminalProgressSink,
)


def _run(coro):
    return asyncio.run(coro)


class _ListSink:
    def __init__(self):
        self.events = []
        self.close_calls = 0

    async def emit(self, event):
        self.events.append(event)

    def close(self):
        self.close_calls += 1


def test_full_success_sequence():
    async def _go():
        sink = _ListSink()
        r = ProgressReporter(sink)
        for stage in (
            ProgressStage.RECEIVED,
            ProgressStage.VALIDATING,
            ProgressStage.CALLING_MODEL,
            ProgressStage.MODEL_RESPONDED,
            ProgressStage.PARSING,
        ):
            await r.advance(stage)
        await r.succeed(GradingResult(data={"totalScore": 80}))
        return sink

    sink = _run(_go())
    stages = [e.stage for e in sink.events]
    assert stages[-1] == ProgressStage.DONE
    assert [e.percent for e in sink.events] == [5, 10, 30, 80, 90, 100]
    assert sink.events[-1].result.total_score == 80
    assert sink.close_calls == 1
    assert sink.events[0].message == "已接收请求"


def test_stages_may_be_skipped_but_not_repeated_or_reversed():
    async def _go():
        r = ProgressReporter(_ListSink())
        await r.advance(ProgressStage.RECEIVED)
        await r.advance(ProgressStage.CALLING_MODEL)
        with pytest.raises(ProgressStateError):
            await r.advance(ProgressStage.VALIDATING)
        with pytest.raises(ProgressStateError):
            await r.advance(ProgressStage.CALLING_MODEL)

    _run(_go())


def test_terminal_stage_only_via_succeed_or_fail():
    async def _go():
        r = ProgressReporter(_ListSink())
        with pytest.raises(ProgressStateError):
            await r.advance(ProgressStage.DONE)
        with pytest.raises(ProgressStateError):
            await r.advance(ProgressStage.ERROR)

    _run(_go())


def test_percent_never_decreases():
    async def _go():
        sink = _ListSink()
        r = ProgressReporter(sink)
        await r.advance(ProgressStage.RECEIVED, percent=50)
        await r.advance(ProgressStage.VALIDATING)
        return sink

    sink = _run(_go())
    assert [e.percent for e in sink.events] == [50, 50]


def test_fail_from_any_stage_is_terminal_and_final():
    async def _go():
        sink = _ListSink()
        r = ProgressReporter(sink)
        await r.advance(ProgressStage.RECEIVED)
        await r.fail({"code": "E4220", "error": "Missing material"}, status_code=400)
        with pytest.raises(ProgressStateError):
            await r.advance(ProgressStage.VALIDATING)
        with pytest.raises(ProgressStateError):
            await r.succeed(GradingResult(data={}))
        return sink, r

    sink, r = _run(_go())
    last = sink.events[-1]
    assert last.stage == ProgressStage.ERROR
    assert last.percent == STAGE_PERCENT[ProgressStage.ERROR] == 100
    assert last.status_code == 400
    assert last.message == "批改失败"
    assert r.finished is True
    assert sink.close_calls == 1


def test_abort_closes_without_terminal_event():
    sink = _ListSink()
    r = ProgressReporter(sink)
    _run(r.advance(ProgressStage.RECEIVED))
    r.abort()
    r.abort()
    assert [e.stage for e in sink.events] == [ProgressStage.RECEIVED]
    assert sink.close_calls == 1


def test_progress_event_serialization_hides_outcome():
    async def _go():
        sink = _ListSink()
        await ProgressReporter(sink).succeed(GradingResult(data={"totalScore": 1}))
        return sink.events[0]

    event = _run(_go())
    assert event.model_dump(mode="json") == {"stage": "done", "percent": 100, "message": "批改完成"}


def test_queue_sink_delivers_in_order_and_ends_on_close():
    async def _go():
        sink = QueueProgressSink()
        r = ProgressReporter(sink)

        async def produce():
            await r.advance(ProgressStage.RECEIVED)
            await r.advance(ProgressStage.VALIDATING)
            await r.fail({"error": "x"}, status_code=500)

        task = asyncio.create_task(produce())
        seen = [e.stage async for e in sink.events()]
        await task
        return seen, sink

    seen, sink = _run(_go())
    assert seen == [ProgressStage.RECEIVED, ProgressStage.VALIDATING, ProgressStage.ERROR]
    assert sink.closed is True


def test_terminal_sink_keeps_only_terminal_event():
    async def _go():
        sink = TerminalProgressSink()
        r = ProgressReporter(sink)
        await r.advance(ProgressStage.RECEIVED)
        assert sink.terminal is None
        await r.succeed(GradingResult(data={"totalScore": 5}))
        return sink

    sink = _run(_go())
    assert sink.terminal.stage == ProgressStage.DONE
    assert sink.closed is True
