import asyncio
import json

import httpx
import pytest

from studyguide.generation import GenerationError
from studyguide.services.chunked.executor import ChunkExecutor, RetryPolicy, is_retryable
from studyguide.services.chunked.parsing import StructuredOutputError
from studyguide.services.chunked.types import ChunkDescriptor

DESCRIPTOR = ChunkDescriptor(start_page=21, end_page=40, index=1, total_chunks=3)


def _payload_text(pages: list[int]) -> str:
    return json.dumps(
        {
            "document_title": "Thermodynamics",
            "total_pages": 47,
            "pages": [{"page_number": number, "page_content": f"p{number}"} for number in pages],
            "overall_summary": "Entropy.",
        }
    )


class ScriptedGenerationClient:
    """Replays a fixed sequence of outcomes, one per call."""

    def __init__(self, outcomes: list[object]) -> None:
        self._outcomes = list(outcomes)
        self.prompts: list[str] = []

    async def generate(self, *, file_handle: str, mime_type: str, prompt: str) -> str:
        self.prompts.append(prompt)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return str(outcome)


class HangingGenerationClient:
    def __init__(self) -> None:
        self.calls = 0

    async def generate(self, *, file_handle: str, mime_type: str, prompt: str) -> str:
        self.calls += 1
        await asyncio.sleep(10)
        return _payload_text([21])


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _executor(client, sleep: SleepRecorder, **policy) -> ChunkExecutor:
    return ChunkExecutor(
        client,
        file_handle="files/abc",
        mime_type="application/pdf",
        context_text="Learner knows: heat engines",
        retry_policy=RetryPolicy(**policy),
        sleep=sleep,
    )


def test_execute_filters_pages_outside_chunk_range() -> None:
    client = ScriptedGenerationClient([_payload_text([19, 21, 22, 40, 41])])
    sleep = SleepRecorder()

    result = asyncio.run(_executor(client, sleep).execute(DESCRIPTOR))

    assert result.error is None
    assert result.payload is not None
    assert [page.page_number for page in result.payload.pages] == [21, 22, 40]
    assert sleep.delays == []
    assert "First page: 21" in client.prompts[0]
    assert "Last page: 40" in client.prompts[0]
    assert "Chunk 2/3" in client.prompts[0]
    assert "Learner knows: heat engines" in client.prompts[0]


def test_execute_fails_chunk_when_every_page_is_out_of_range() -> None:
    client = ScriptedGenerationClient([_payload_text([1, 2, 41])])
    sleep = SleepRecorder()

    result = asyncio.run(_executor(client, sleep).execute(DESCRIPTOR))

    assert result.payload is None
    assert result.error is not None
    assert "no pages within range 21-40" in result.error
    assert len(client.prompts) == 1
    assert sleep.delays == []


def test_execute_retries_transient_failures_with_backoff() -> None:
    client = ScriptedGenerationClient(
        [
            GenerationError("service overloaded", status_code=503, retryable=True),
            GenerationError("rate limited", status_code=429, retryable=True),
            _payload_text([25]),
        ]
    )
    sleep = SleepRecorder()

    result = asyncio.run(_executor(client, sleep).execute(DESCRIPTOR))

    assert result.succeeded
    assert len(client.prompts) == 3
    assert sleep.delays == [2.0, 4.0]


def test_execute_returns_error_after_exhausting_retries() -> None:
    client = ScriptedGenerationClient(
        [GenerationError("status=503", status_code=503, retryable=True) for _ in range(3)]
    )
    sleep = SleepRecorder()

    result = asyncio.run(_executor(client, sleep, max_retries=3).execute(DESCRIPTOR))

    assert result.payload is None
    assert result.error == "status=503"
    assert result.descriptor == DESCRIPTOR
    assert len(client.prompts) == 3
    assert sleep.delays == [2.0, 4.0]


def test_execute_stops_on_non_retryable_failure() -> None:
    client = ScriptedGenerationClient(["this is not json", _payload_text([21])])
    sleep = SleepRecorder()

    result = asyncio.run(_executor(client, sleep).execute(DESCRIPTOR))

    assert result.payload is None
    assert result.error is not None
    assert "Failed to parse structured output" in result.error
    assert len(client.prompts) == 1
    assert sleep.delays == []


def test_execute_never_raises_for_unexpected_errors() -> None:
    client = ScriptedGenerationClient([KeyError("boom")])

    result = asyncio.run(_executor(client, SleepRecorder()).execute(DESCRIPTOR))

    assert result.payload is None
    assert "boom" in (result.error or "")


def test_execute_applies_attempt_deadline_and_retries() -> None:
    client = HangingGenerationClient()
    sleep = SleepRecorder()

    result = asyncio.run(
        _executor(client, sleep, max_retries=2, attempt_timeout_seconds=0.01).execute(DESCRIPTOR)
    )

    assert result.error == "generation attempt timeout"
    assert client.calls == 2
    assert sleep.delays == [2.0]


def test_backoff_delay_stays_within_bounds() -> None:
    policy = RetryPolicy(max_retries=10)

    assert policy.backoff_delay(1) == 0.0
    for attempt in range(2, 11):
        delay = policy.backoff_delay(attempt)
        assert 1.0 * 2 ** (attempt - 2) <= delay or delay == 10.0
        assert delay <= 10.0
    assert policy.backoff_delay(5) == 10.0


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (GenerationError("x", status_code=503, retryable=True), True),
        (GenerationError("x", status_code=400, retryable=False), False),
        (httpx.ReadTimeout("read timed out"), True),
        (httpx.ConnectError("connection reset"), True),
        (httpx.RemoteProtocolError("Server disconnected without sending a response."), True),
        (asyncio.TimeoutError(), True),
        (RuntimeError("The model is overloaded. Try again later."), True),
        (RuntimeError("Request TIMEOUT"), True),
        (RuntimeError("invalid argument"), False),
        (StructuredOutputError("timeout while parsing"), False),
    ],
)
def test_is_retryable_classification(exc: BaseException, expected: bool) -> None:
    assert is_retryable(exc) is expected
