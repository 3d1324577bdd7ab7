"""
HTTP client for the essay grading API.

`grade()` prefers `/grade-stream` and reports progress as it arrives; it falls back
to the single-shot `/grade` when the server does not answer with an event stream,
or when the stream ends with neither a result nor an error.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]


class GradeClientError(Exception):
    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details


class SSEDecoder:
    """
    Line-at-a-time SSE framing: `event:` names the block, `data:` lines accumulate,
    a blank line dispatches. Multi-line data is joined with "\\n".
    """

    def __init__(self) -> None:
        self._event = "message"
        self._data: List[str] = []

    def feed(self, raw: str) -> Optional[Tuple[str, str]]:
        line = raw.rstrip("\r\n")
        if not line:
            return self.flush()
        if line.startswith(":"):
            return None
        if line.startswith("event:"):
            self._event = line[len("event:") :].strip() or "message"
        elif line.startswith("data:"):
            value = line[len("data:") :]
            self._data.append(value[1:] if value.startswith(" ") else value)
        return None

    def flush(self) -> Optional[Tuple[str, str]]:
        out = (self._event, "\n".join(self._data)) if self._data else None
        self._event, self._data = "message", []
        return out


def parse_sse_lines(lines: Iterable[str]) -> Iterator[Tuple[str, str]]:
    decoder = SSEDecoder()
    for line in lines:
        block = decoder.feed(line)
        if block is not None:
            yield block
    block = decoder.flush()
    if block is not None:
        yield block


def _error_from_response(resp: httpx.Response) -> GradeClientError:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = str(body.get("message") or body.get("error") or f"HTTP {resp.status_code}")
        return GradeClientError(message, status=resp.status_code, details=body.get("details"))
    return GradeClientError(f"Grade request failed ({resp.status_code})", status=resp.status_code)


class GradeClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._headers = dict(headers or {})

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers=self._headers,
        )

    async def grade_once(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with self._client() as client:
            resp = await client.post("/grade", json=payload)
        if resp.status_code != 200:
            raise _error_from_response(resp)
        return resp.json()

    def _handle_block(
        self, event: str, data: str, on_progress: Optional[ProgressCallback]
    ) -> Optional[Dict[str, Any]]:
        try:
            obj = json.loads(data)
        except ValueError:
            logger.warning("Skipping undecodable %s event", event)
            return None
        if event == "progress":
            if on_progress is not None:
                on_progress(obj)
            return None
        if event == "result":
            return obj
        if event == "error":
            if not isinstance(obj, dict):
                raise GradeClientError("Grading failed", details=obj)
            raise GradeClientError(
                str(obj.get("message") or obj.get("error") or "Grading failed"),
                status=obj.get("status"),
                details=obj.get("details"),
            )
        return None

    def _pick_result(
        self,
        block: Tuple[str, str],
        on_progress: Optional[ProgressCallback],
        current: Optional[Dict[str, Any]],
    ) -> Optional[Dict[str, Any]]:
        # An empty object is still a result.
        found = self._handle_block(*block, on_progress)
        return found if found is not None else current

    async def grade(
        self,
        payload: Dict[str, Any],
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, Any]:
        result: Optional[Dict[str, Any]] = None
        async with self._client() as client:
            async with client.stream("POST", "/grade-stream", json=payload) as resp:
                if resp.status_code != 200:
                    await resp.aread()
                    raise _error_from_response(resp)
                content_type = resp.headers.get("content-type", "")
                if "text/event-stream" in content_type:
                    decoder = SSEDecoder()
                    async for line in resp.aiter_lines():
                        block = decoder.feed(line)
                        if block is not None:
                            result = self._pick_result(block, on_progress, result)
                    block = decoder.flush()
                    if block is not None:
                        result = self._pick_result(block, on_progress, result)
                else:
                    logger.info("Server did not stream (content-type=%s); falling back", content_type)
        if result is not None:
            return result
        return await self.grade_once(payload)
