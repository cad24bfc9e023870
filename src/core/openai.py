"""OpenAI client with retry logic and latency logging."""

import logging
import time
from functools import lru_cache
from typing import Any

from openai import APIConnectionError, APITimeoutError, OpenAI, RateLimitError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.config import get_settings

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES = 3
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 10

# Latency thresholds for logging (milliseconds)
SLOW_CALL_THRESHOLD_MS = 2000

RETRYABLE_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError)


class TimedOpenAIClient:
    """Chat completion wrapper that retries transient errors and logs latency."""

    def __init__(self, client: OpenAI, model: str):
        self._client = client
        self.model = model

    @retry(
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
        reraise=True,
    )
    def _create_with_retry(self, **kwargs: Any) -> Any:
        return self._client.chat.completions.create(**kwargs)

    def complete(self, messages: list[dict[str, Any]], **kwargs: Any) -> str:
        """Run a chat completion and return the first choice's text.

        Args:
            messages: Chat messages in OpenAI format.
            **kwargs: Extra arguments for the completions API.

        Returns:
            str: Stripped message content, empty if the model returned none.
        """
        start_time = time.perf_counter()
        error_msg = None

        try:
            response = self._create_with_retry(model=self.model, messages=messages, **kwargs)
            content = response.choices[0].message.content if response.choices else None
            return (content or "").strip()

        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            raise

        finally:
            latency_ms = (time.perf_counter() - start_time) * 1000
            log_msg = f"OpenAI chat completion: model={self.model}, latency={latency_ms:.2f}ms"

            if error_msg:
                logger.error("%s, error=%s", log_msg, error_msg)
            elif latency_ms > SLOW_CALL_THRESHOLD_MS:
                logger.warning("SLOW OpenAI call: %s", log_msg)
            else:
                logger.info(log_msg)


@lru_cache
def get_openai_client() -> TimedOpenAIClient:
    """Get cached OpenAI client singleton with retry logic.

    Returns:
        TimedOpenAIClient: OpenAI client wrapper.
    """
    settings = get_settings()
    raw_client = OpenAI(api_key=settings.openai_api_key)
    return TimedOpenAIClient(raw_client, model=settings.openai_model)
