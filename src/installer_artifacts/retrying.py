"""
Caller-side retry for artifact fetches.

The provider never retries on its own. Re-fetching is always safe because
content is addressed by digest, so callers that want resilience wrap their
fetch with get_with_retry().
"""
from __future__ import annotations

import logging
from typing import Optional

from tenacity import RetryCallState, retry, retry_if_result, stop_after_attempt, wait_exponential

from .handle import StreamingHandle
from .provider import ArtifactProvider, FetchResult, FetchStatus

__all__ = ["get_with_retry"]

logger = logging.getLogger(__name__)


def _is_transient(result: FetchResult) -> bool:
    return result.status is FetchStatus.TRANSIENT


def _last_result(state: RetryCallState) -> FetchResult:
    return state.outcome.result()


def _log_retry(state: RetryCallState) -> None:
    result = state.outcome.result()
    logger.debug(f"Fetch attempt {state.attempt_number} failed transiently: {result.error}")


def get_with_retry(provider: ArtifactProvider, artifact: str, *, attempts: int = 3,
                   min_wait_s: float = 1.0, max_wait_s: float = 10.0) -> Optional[StreamingHandle]:
    """
    Fetch an artifact, retrying transient failures with exponential backoff.

    Not-found, permission and invalid-name results are returned immediately.

    Args:
        provider: Provider to fetch from
        artifact: Artifact name
        attempts: Total number of attempts
        min_wait_s: Lower bound for the backoff between attempts
        max_wait_s: Upper bound for the backoff between attempts

    Returns:
        StreamingHandle, or None if every attempt failed
    """
    @retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=min_wait_s, max=max_wait_s),
        retry=retry_if_result(_is_transient),
        before_sleep=_log_retry,
        retry_error_callback=_last_result,
    )
    def _attempt() -> FetchResult:
        return provider.fetch(artifact)

    return _attempt().handle
