"""Model gateway for DashScope (Qwen) native generation endpoints.

Two targets, chosen by the prompt variant:
- text-generation       -> qwen-max      (TextPrompt)
- multimodal-generation -> qwen-vl-max   (MultimodalPrompt, image parts as data URI or URL)

Notes:
- One POST per grading call. No retry: transient upstream failures are the caller's to retry.
- The credential is given at construction; a missing credential fails before any I/O.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import httpx

from essay_grader.core.prompt_builder import (
    ImagePart,
    MultimodalPrompt,
    PromptPayload,
    TextPart,
    TextPrompt,
)
from essay_grader.utils.errors import ConfigError, ErrorReason, GatewayError
from essay_grader.utils.observability import log_event, log_llm_usage, trace_span
from essay_grader.utils.settings import Settings

logger = logging.getLogger(__name__)

_MAX_ERROR_BODY_CHARS = 2000


@dataclass
class GenerationReply:
    text: str
    raw: Dict[str, Any] = field(default_factory=dict)
    model: str = ""
    usage: Optional[Dict[str, Any]] = None


def normalize_generation_text(data: Any) -> str:
    """
    Pull the reply text out of either response shape:
    - output.choices[0].message.content (string, or list of parts with `text`)
    - output.text (legacy)
    Absence of text yields "" so extraction reports the failure.
    """
    output = data.get("output") if isinstance(data, dict) else None
    if not isinstance(output, dict):
        return ""

    content = None
    choices = output.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict):
            content = message.get("content")
    if content is None:
        content = output.get("text")

    if not content:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for item in content:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                return item["text"]
    return ""


def _upstream_error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        code = data.get("code")
        return f"Upstream error ({resp.status_code}{', ' + str(code) if code else ''}): {data['message']}"
    return f"Upstream request failed ({resp.status_code})"


class ModelGateway:
    def __init__(
        self,
        *,
        api_key: Optional[str],
        text_url: str,
        multimodal_url: str,
        text_model: str = "qwen-max",
        vision_model: str = "qwen-vl-max",
        text_temperature: float = 0.2,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not api_key or not str(api_key).strip():
            raise ConfigError(
                "Missing DASHSCOPE_API_KEY", reason=ErrorReason.MISSING_CREDENTIAL
            )
        self._api_key = str(api_key).strip()
        self.text_url = text_url
        self.multimodal_url = multimodal_url
        self.text_model = text_model
        self.vision_model = vision_model
        self.text_temperature = text_temperature
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "ModelGateway":
        return cls(
            api_key=settings.dashscope_api_key,
            text_url=settings.dashscope_text_url,
            multimodal_url=settings.dashscope_multimodal_url,
            text_model=settings.dashscope_text_model,
            vision_model=settings.dashscope_vision_model,
            text_temperature=settings.dashscope_text_temperature,
            timeout_seconds=settings.dashscope_timeout_seconds,
            transport=transport,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def build_request(self, payload: PromptPayload) -> Tuple[str, str, Dict[str, Any]]:
        """Return (url, model, json body) for the payload variant."""
        if isinstance(payload, TextPrompt):
            body = {
                "model": self.text_model,
                "input": {
                    "messages": [
                        {"role": "system", "content": payload.system},
                        {"role": "user", "content": payload.user},
                    ]
                },
                "parameters": {"temperature": self.text_temperature},
            }
            return self.text_url, self.text_model, body

        if isinstance(payload, MultimodalPrompt):
            content = []
            for part in payload.parts:
                if isinstance(part, ImagePart):
                    content.append({"image": part.image})
                elif isinstance(part, TextPart):
                    content.append({"text": part.text})
            body = {
                "model": self.vision_model,
                "input": {
                    "messages": [
                        {"role": "system", "content": [{"text": payload.system}]},
                        {"role": "user", "content": content},
                    ]
                },
                "parameters": {"result_format": "message"},
            }
            return self.multimodal_url, self.vision_model, body

        raise TypeError(f"Unsupported prompt payload: {type(payload).__name__}")

    @trace_span("gateway.generate")
    async def generate(
        self, payload: PromptPayload, *, request_id: Optional[str] = None
    ) -> GenerationReply:
        url, model, body = self.build_request(payload)
        path = "multimodal" if payload.use_multimodal else "text"

        # Leaving the context closes the connection, including on cancellation.
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds, transport=self._transport
        ) as client:
            try:
                resp = await client.post(url, json=body, headers=self._headers())
            except httpx.HTTPError as e:
                raise GatewayError(
                    f"Upstream request failed: {e.__class__.__name__}",
                    reason=ErrorReason.UPSTREAM_TRANSPORT_ERROR,
                    details={"error": str(e)},
                ) from e

        if resp.status_code >= 400:
            log_event(
                logger,
                "gateway_upstream_error",
                level="warning",
                request_id=request_id,
                model=model,
                path=path,
                status=resp.status_code,
            )
            raise GatewayError(
                _upstream_error_message(resp),
                reason=ErrorReason.UPSTREAM_HTTP_ERROR,
                upstream_status=resp.status_code,
                body=resp.text[:_MAX_ERROR_BODY_CHARS],
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise GatewayError(
                "Upstream returned a non-JSON body",
                reason=ErrorReason.UPSTREAM_INVALID_BODY,
                upstream_status=resp.status_code,
                body=resp.text[:_MAX_ERROR_BODY_CHARS],
            ) from e
        if not isinstance(data, dict):
            raise GatewayError(
                "Upstream returned an unexpected body",
                reason=ErrorReason.UPSTREAM_INVALID_BODY,
                upstream_status=resp.status_code,
                body=resp.text[:_MAX_ERROR_BODY_CHARS],
            )

        usage = data.get("usage") if isinstance(data.get("usage"), dict) else None
        log_llm_usage(logger, request_id=request_id, model=model, path=path, usage=usage)
        return GenerationReply(
            text=normalize_generation_text(data), raw=data, model=model, usage=usage
        )
