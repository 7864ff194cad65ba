import asyncio
import json

import httpx
import pytest

from municipal_scanner.errors import CompletionError, ConfigurationError
from municipal_scanner.services import llm
from municipal_scanner.services.llm import OPENROUTER_API_URL, OpenRouterClient


def _client(handler) -> OpenRouterClient:
    return OpenRouterClient(
        api_key="test-key",
        site_url="https://scanner.example",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def _complete(client: OpenRouterClient, **kwargs):
    async def go():
        try:
            return await client.complete([{"role": "user", "content": "hello"}], **kwargs)
        finally:
            await client._client.aclose()
    return asyncio.run(go())


class TestOpenRouterClient:

    def test_missing_api_key_fails_at_construction(self, monkeypatch):
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        monkeypatch.setattr(llm, "load_dotenv", lambda *a, **k: False)
        with pytest.raises(ConfigurationError):
            OpenRouterClient()

    def test_request_shape_and_parsed_response(self):
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "id": "gen-1",
                "model": "x-ai/grok-4.1-fast",
                "choices": [{"index": 0, "message": {"role": "assistant", "content": '{"rfps": []}'}}],
                "usage": {"prompt_tokens": 10, "completion_tokens": 4, "total_tokens": 14},
            })

        response = _complete(
            _client(handler), model="x-ai/grok-4.1-fast", temperature=0.3, max_tokens=512, response_format="json_object",
        )

        assert response.content == '{"rfps": []}'
        assert response.usage.total_tokens == 14
        assert captured["url"] == OPENROUTER_API_URL
        assert captured["headers"]["Authorization"] == "Bearer test-key"
        assert captured["headers"]["HTTP-Referer"] == "https://scanner.example"
        assert captured["body"]["response_format"] == {"type": "json_object"}
        assert captured["body"]["temperature"] == 0.3
        assert captured["body"]["max_tokens"] == 512

    def test_plain_mode_sends_no_response_format(self):
        captured = {}

        def handler(request):
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": "ok"}}]})

        assert _complete(_client(handler)).content == "ok"
        assert "response_format" not in captured["body"]

    def test_error_status_carries_body(self):
        def handler(request):
            return httpx.Response(429, json={"error": {"message": "rate limited"}})

        with pytest.raises(CompletionError) as excinfo:
            _complete(_client(handler))
        assert excinfo.value.status_code == 429
        assert excinfo.value.response_body == {"error": {"message": "rate limited"}}

    def test_wrong_wire_shape(self):
        def handler(request):
            return httpx.Response(200, json={"result": "nope"})

        with pytest.raises(CompletionError, match="Invalid response"):
            _complete(_client(handler))

    def test_transport_failure(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(CompletionError, match="request failed"):
            _complete(_client(handler))
