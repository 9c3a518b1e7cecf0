from __future__ import annotations

from typing import Protocol

import httpx

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class GenerationError(RuntimeError):
    """Failure reported by the generation service.

    ``retryable`` is decided where the failure is observed (HTTP status or
    transport error), so callers never have to inspect the message text.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class GenerationClient(Protocol):
    async def generate(self, *, file_handle: str, mime_type: str, prompt: str) -> str: ...


class GeminiGenerationClient:
    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        timeout_seconds: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def generate(self, *, file_handle: str, mime_type: str, prompt: str) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    f"{self._base_url}/models/{self._model}:generateContent",
                    headers={"x-goog-api-key": self._api_key},
                    json={
                        "contents": [
                            {
                                "role": "user",
                                "parts": [
                                    {"fileData": {"fileUri": file_handle, "mimeType": mime_type}},
                                    {"text": prompt},
                                ],
                            }
                        ],
                        "generationConfig": {
                            "responseMimeType": "application/json",
                            "temperature": 0.2,
                        },
                    },
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            raise GenerationError(
                f"generation request failed status={status_code}: {_error_detail(exc.response)}",
                status_code=status_code,
                retryable=status_code in RETRYABLE_STATUS_CODES,
            ) from exc
        except httpx.TransportError as exc:
            raise GenerationError(
                f"generation request timeout/network error: {exc!r}",
                retryable=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise GenerationError(str(exc)) from exc

        return _extract_text(response.json())


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    error = payload.get("error") if isinstance(payload, dict) else None
    message = error.get("message") if isinstance(error, dict) else None
    if isinstance(message, str) and message:
        return message
    return response.text[:200]


def _extract_text(payload: object) -> str:
    candidates = payload.get("candidates") if isinstance(payload, dict) else None
    if not isinstance(candidates, list) or not candidates:
        raise GenerationError("Invalid generation payload: missing candidates")

    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        raise GenerationError("Invalid generation payload: missing content parts")

    text = "".join(
        part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)
    )
    if not text.strip():
        raise GenerationError("Empty response from generation service")

    return text
