import asyncio
import json

import httpx
import pytest

from essay_grader.core.prompt_builder import build_prompt
from essay_grader.core.request_normalizer import normalize
from essay_grader.services.model_gateway import ModelGateway, normalize_generation_text
from essay_grader.utils.errors import ConfigError, ErrorReason, GatewayError
from essay_grader.utils.settings import Settings

TEXT_URL = "https://dashscope.test/text-generation/generation"
MM_URL = "https://dashscope.test/multimodal-generation/generation"


def _run(coro):
    return asyncio.run(coro)


def _gateway(handler, **kwargs) -> ModelGateway:
    return ModelGateway(
        api_key=kwargs.pop("api_key", "sk-test-key-0000000000"),
        text_url=TEXT_URL,
        multimodal_url=MM_URL,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _text_prompt():
    return build_prompt(normalize({"topic": "T", "material": "材料", "text": "作答"}))


def _mm_prompt():
    return build_prompt(
        normalize({"material": "材料", "images": ["data:image/png;base64,AAA", "https://x/2.jpg"]})
    )


def test_text_request_shape_and_auth_header():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "output": {"choices": [{"message": {"role": "assistant", "content": '{"totalScore": 70}'}}]},
                "usage": {"input_tokens": 10, "output_tokens": 5, "total_tokens": 15},
            },
        )

    prompt = _text_prompt()
    reply = _run(_gateway(handler, text_temperature=0.3).generate(prompt))

    assert seen["url"] == TEXT_URL
    assert seen["auth"] == "Bearer sk-test-key-0000000000"
    body = seen["body"]
    assert body["model"] == "qwen-max"
    assert body["parameters"] == {"temperature": 0.3}
    assert body["input"]["messages"] == [
        {"role": "system", "content": prompt.system},
        {"role": "user", "content": prompt.user},
    ]
    assert reply.text == '{"totalScore": 70}'
    assert reply.model == "qwen-max"
    assert reply.usage["total_tokens"] == 15


def test_multimodal_request_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"output": {"choices": [{"message": {"content": [{"text": '{"totalScore": 60}'}]}}]}},
        )

    prompt = _mm_prompt()
    reply = _run(_gateway(handler).generate(prompt))

    assert seen["url"] == MM_URL
    body = seen["body"]
    assert body["model"] == "qwen-vl-max"
    assert body["parameters"] == {"result_format": "message"}
    system, user = body["input"]["messages"]
    assert system == {"role": "system", "content": [{"text": prompt.system}]}
    assert user["role"] == "user"
    assert {"image": "data:image/png;base64,AAA"} in user["content"]
    assert {"image": "https://x/2.jpg"} in user["content"]
    assert len(user["content"]) == len(prompt.parts)
    assert reply.text == '{"totalScore": 60}'


@pytest.mark.parametrize(
    "data,expected",
    [
        ({"output": {"choices": [{"message": {"content": "abc"}}]}}, "abc"),
        ({"output": {"choices": [{"message": {"content": [{"image": "x"}, {"text": "t1"}, {"text": "t2"}]}}]}}, "t1"),
        ({"output": {"text": "legacy"}}, "legacy"),
        ({"output": {"choices": [], "text": "legacy"}}, "legacy"),
        ({"output": {"choices": [{"message": {"content": ""}}]}}, ""),
        ({"output": {}}, ""),
        ({}, ""),
        ("not a dict", ""),
    ],
)
def test_normalize_generation_text(data, expected):
    assert normalize_generation_text(data) == expected


@pytest.mark.parametrize("status", [401, 429, 503])
def test_upstream_http_error_keeps_status_and_body(status):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"code": "Throttling", "message": "slow down"})

    with pytest.raises(GatewayError) as ei:
        _run(_gateway(handler).generate(_text_prompt()))
    err = ei.value
    assert err.status_code == status
    assert err.reason == ErrorReason.UPSTREAM_HTTP_ERROR
    assert err.upstream_status == status
    assert "slow down" in err.body
    assert "slow down" in err.message
    assert err.payload_details()["upstream_status"] == status


def test_upstream_error_body_is_truncated():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="x" * 5000)

    with pytest.raises(GatewayError) as ei:
        _run(_gateway(handler).generate(_text_prompt()))
    assert len(ei.value.body) == 2000
    assert ei.value.message == "Upstream request failed (500)"


def test_transport_error_maps_to_500():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayError) as ei:
        _run(_gateway(handler).generate(_text_prompt()))
    assert ei.value.status_code == 500
    assert ei.value.reason == ErrorReason.UPSTREAM_TRANSPORT_ERROR


def test_non_json_success_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    with pytest.raises(GatewayError) as ei:
        _run(_gateway(handler).generate(_text_prompt()))
    assert ei.value.reason == ErrorReason.UPSTREAM_INVALID_BODY
    assert ei.value.status_code == 500


def test_missing_output_text_yields_empty_reply():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"output": {}, "request_id": "r"})

    reply = _run(_gateway(handler).generate(_text_prompt()))
    assert reply.text == ""


@pytest.mark.parametrize("api_key", [None, "", "   "])
def test_missing_credential_fails_before_io(api_key):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(ConfigError) as ei:
        _gateway(handler, api_key=api_key)
    assert ei.value.reason == ErrorReason.MISSING_CREDENTIAL
    assert ei.value.status_code == 500


def test_from_settings_reads_models_and_urls():
    settings = Settings(
        DASHSCOPE_API_KEY="sk-abc",
        DASHSCOPE_TEXT_URL=TEXT_URL,
        DASHSCOPE_TEXT_MODEL="qwen-plus",
        DASHSCOPE_TIMEOUT_SECONDS=30,
    )
    gw = ModelGateway.from_settings(settings)
    assert gw.text_url == TEXT_URL
    assert gw.text_model == "qwen-plus"
    assert gw.vision_model == "qwen-vl-max"
    assert gw.timeout_seconds == 30
