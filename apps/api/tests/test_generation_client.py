import asyncio
import json

import httpx
import pytest

from studyguide.generation import GeminiGenerationClient, GenerationError


def _client(handler) -> GeminiGenerationClient:
    return GeminiGenerationClient(
        base_url="https://generativelanguage.googleapis.com/v1beta/",
        api_key="test-key",
        model="gemini-test",
        timeout_seconds=12,
        transport=httpx.MockTransport(handler),
    )


def _generate(client: GeminiGenerationClient) -> str:
    return asyncio.run(
        client.generate(file_handle="files/abc", mime_type="application/pdf", prompt="pages 1-20")
    )


def test_gemini_client_sends_file_reference_and_returns_text() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["api_key"] = request.headers["x-goog-api-key"]
        captured["json"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": '{"pages": '}, {"text": "[]}"}]}}]},
        )

    text = _generate(_client(handler))

    assert text == '{"pages": []}'
    assert captured["url"] == (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-test:generateContent"
    )
    assert captured["api_key"] == "test-key"
    body = captured["json"]
    assert body["contents"][0]["parts"] == [
        {"fileData": {"fileUri": "files/abc", "mimeType": "application/pdf"}},
        {"text": "pages 1-20"},
    ]
    assert body["generationConfig"]["responseMimeType"] == "application/json"


@pytest.mark.parametrize(("status_code", "retryable"), [(503, True), (429, True), (400, False), (403, False)])
def test_gemini_client_classifies_http_errors(status_code: int, retryable: bool) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json={"error": {"message": "The model is overloaded."}})

    with pytest.raises(GenerationError, match="The model is overloaded") as exc_info:
        _generate(_client(handler))

    assert exc_info.value.status_code == status_code
    assert exc_info.value.retryable is retryable


@pytest.mark.parametrize(
    "error",
    [
        httpx.ReadTimeout("timed out"),
        httpx.ConnectError("connection reset by peer"),
        httpx.RemoteProtocolError("Server disconnected without sending a response."),
    ],
)
def test_gemini_client_marks_timeouts_retryable(error: httpx.TransportError) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise error

    with pytest.raises(GenerationError) as exc_info:
        _generate(_client(handler))

    assert exc_info.value.retryable is True
    assert exc_info.value.status_code is None


def test_gemini_client_rejects_payload_without_candidates() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"promptFeedback": {"blockReason": "OTHER"}})

    with pytest.raises(GenerationError, match="missing candidates") as exc_info:
        _generate(_client(handler))

    assert exc_info.value.retryable is False
