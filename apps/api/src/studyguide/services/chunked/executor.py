from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
from time import perf_counter

import httpx

from studyguide.generation import GenerationClient, GenerationError
from studyguide.services.chunked.parsing import StructuredOutputError, parse_structured_result
from studyguide.services.chunked.prompts import build_chunk_prompt
from studyguide.services.chunked.types import ChunkDescriptor, ChunkResult, StructuredResult

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

_RETRYABLE_MESSAGE_MARKERS = ("overloaded", "timeout")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    attempt_timeout_seconds: float | None = None

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait before ``attempt`` (1-based); the first attempt never waits."""
        if attempt <= 1:
            return 0.0
        return min(self.base_delay_seconds * 2 ** (attempt - 1), self.max_delay_seconds)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, StructuredOutputError):
        return False
    if isinstance(exc, GenerationError):
        return exc.retryable
    if isinstance(exc, (asyncio.TimeoutError, httpx.TransportError)):
        return True
    # last resort for clients that do not classify their own errors
    message = str(exc).lower()
    return any(marker in message for marker in _RETRYABLE_MESSAGE_MARKERS)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "generation attempt timeout"
    return str(exc) or exc.__class__.__name__


class ChunkExecutor:
    def __init__(
        self,
        client: GenerationClient,
        *,
        file_handle: str,
        mime_type: str,
        context_text: str,
        retry_policy: RetryPolicy | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._client = client
        self._file_handle = file_handle
        self._mime_type = mime_type
        self._context_text = context_text
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def __call__(self, descriptor: ChunkDescriptor) -> ChunkResult:
        return await self.execute(descriptor)

    async def execute(self, descriptor: ChunkDescriptor) -> ChunkResult:
        start = perf_counter()
        policy = self._retry_policy
        label = f"chunk={descriptor.index + 1}/{descriptor.total_chunks}"
        prompt = build_chunk_prompt(descriptor, self._context_text)
        last_error = "no attempts made"

        for attempt in range(1, policy.max_retries + 1):
            delay = policy.backoff_delay(attempt)
            if delay > 0:
                logger.info("%s retrying in %.1fs attempt=%d/%d", label, delay, attempt, policy.max_retries)
                await self._sleep(delay)

            try:
                payload = await self._attempt(descriptor, prompt)
            except Exception as exc:
                last_error = _describe(exc)
                retryable = is_retryable(exc)
                logger.warning(
                    "%s pages=%d-%d attempt=%d/%d retryable=%s error=%s",
                    label,
                    descriptor.start_page,
                    descriptor.end_page,
                    attempt,
                    policy.max_retries,
                    retryable,
                    last_error,
                )
                if not retryable:
                    break
                continue

            processing_time_ms = int((perf_counter() - start) * 1000)
            logger.info(
                "%s processed pages=%d-%d page_count=%d duration_ms=%d",
                label,
                descriptor.start_page,
                descriptor.end_page,
                len(payload.pages),
                processing_time_ms,
            )
            return ChunkResult(
                descriptor=descriptor,
                payload=payload,
                error=None,
                processing_time_ms=processing_time_ms,
            )

        return ChunkResult(
            descriptor=descriptor,
            payload=None,
            error=last_error,
            processing_time_ms=int((perf_counter() - start) * 1000),
        )

    async def _attempt(self, descriptor: ChunkDescriptor, prompt: str) -> StructuredResult:
        call = self._client.generate(
            file_handle=self._file_handle,
            mime_type=self._mime_type,
            prompt=prompt,
        )
        timeout = self._retry_policy.attempt_timeout_seconds
        if timeout is None:
            text = await call
        else:
            text = await asyncio.wait_for(call, timeout=timeout)

        result = parse_structured_result(text)
        in_range = [page for page in result.pages if descriptor.contains(page.page_number)]
        dropped = len(result.pages) - len(in_range)
        if dropped:
            logger.info(
                "chunk=%d/%d dropped out-of-range pages=%d range=%d-%d",
                descriptor.index + 1,
                descriptor.total_chunks,
                dropped,
                descriptor.start_page,
                descriptor.end_page,
            )
        if not in_range:
            raise StructuredOutputError(
                f"no pages within range {descriptor.start_page}-{descriptor.end_page}"
                f" (returned {len(result.pages)} out-of-range pages)"
            )
        return result.model_copy(update={"pages": in_range})
