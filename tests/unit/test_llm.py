"""Unit tests for counsel.services.llm."""

import asyncio
import json

import httpx
import pytest

from counsel.services.llm import LLMClient, LLMResponseError


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    async def no_sleep(seconds):
        return None

    monkeypatch.setattr(LLMClient.complete_json.retry, "sleep", no_sleep)


def completion(content):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "gpt-4o-mini",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


def make_client(handler) -> LLMClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LLMClient(api_key="sk-test", model="gpt-4o-mini", temperature=0.2, http_client=http_client)


def complete(client: LLMClient, **kwargs):
    return asyncio.run(client.complete_json("system prompt", "user message", **kwargs))


class TestCompleteJson:
    def test_returns_parsed_object(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion('{"legal": ["Notice was given"], "analysis": "Strong"}'))

        data = complete(make_client(handler), max_tokens=300)
        assert data == {"legal": ["Notice was given"], "analysis": "Strong"}
        assert seen["path"].endswith("/chat/completions")
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "gpt-4o-mini"
        assert seen["body"]["max_tokens"] == 300
        assert seen["body"]["temperature"] == 0.2
        assert seen["body"]["response_format"] == {"type": "json_object"}
        assert seen["body"]["messages"] == [
            {"role": "system", "content": "system prompt"},
            {"role": "user", "content": "user message"},
        ]

    def test_invalid_json(self):
        client = make_client(lambda request: httpx.Response(200, json=completion("legal: yes")))
        with pytest.raises(LLMResponseError, match="not valid JSON"):
            complete(client)

    def test_json_array_is_rejected(self):
        client = make_client(lambda request: httpx.Response(200, json=completion('["a", "b"]')))
        with pytest.raises(LLMResponseError, match="not an object"):
            complete(client)

    def test_empty_content(self):
        client = make_client(lambda request: httpx.Response(200, json=completion(None)))
        with pytest.raises(LLMResponseError, match="Empty completion"):
            complete(client)

    def test_retries_server_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(500, json={"error": {"message": "overloaded", "type": "server_error"}})
            return httpx.Response(200, json=completion('{"analysis": "ok"}'))

        assert complete(make_client(handler)) == {"analysis": "ok"}
        assert len(calls) == 2

    def test_response_errors_are_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=completion("not json"))

        with pytest.raises(LLMResponseError):
            complete(make_client(handler))
        assert len(calls) == 1


def test_unconfigured_client_raises():
    client = LLMClient(api_key=None, model="gpt-4o-mini")
    assert client.is_configured is False
    with pytest.raises(RuntimeError):
        complete(client)
