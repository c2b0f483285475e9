import asyncio
import logging
import random
from typing import List, Optional, Sequence

from openai import (
    APIConnectionError,
    APIStatusError,
    RateLimitError,
    OpenAIError
)
from openai import AsyncOpenAI
from openai.types.chat import (
    ChatCompletionMessageParam,
    ChatCompletionSystemMessageParam,
    ChatCompletionUserMessageParam
)

from paradox_translator.errors import RemoteCallError

logger = logging.getLogger(__name__)


def system_message(content: str) -> ChatCompletionSystemMessageParam:
    return ChatCompletionSystemMessageParam(role="system", content=content)


def user_message(content: str) -> ChatCompletionUserMessageParam:
    return ChatCompletionUserMessageParam(role="user", content=content)


def _retry_delay(attempt: int, base_delay: float, api_exc: Optional[Exception] = None) -> float:
    """
    Delay before the next attempt: the server's ``Retry-After`` header when it
    sends one, otherwise exponential backoff with jitter.
    """
    try:
        if api_exc is not None and isinstance(api_exc, OpenAIError):
            headers = getattr(getattr(api_exc, "response", None), "headers", None) or {}
            retry_after_header = headers.get("Retry-After") or headers.get("retry-after")
            if retry_after_header:
                if retry_after_header.isdigit():
                    return float(retry_after_header)
                if retry_after_header.endswith("ms"):
                    return float(retry_after_header[:-2]) / 1000
    except (AttributeError, ValueError) as exc:
        logger.warning(f"Failed to parse Retry-After header: {exc}. Falling back to exponential backoff.")
    return base_delay * (2 ** (attempt - 1)) + random.uniform(0, 1)


def _is_retryable(api_exc: OpenAIError) -> bool:
    """Rate limits, timeouts, dropped connections and 5xx answers are worth another try."""
    if isinstance(api_exc, (RateLimitError, APIConnectionError)):
        return True
    return isinstance(api_exc, APIStatusError) and api_exc.status_code >= 500


class ChatClient:
    """
    Chat-completion collaborator of the translator.

    Retries and per-request timeouts are handled here, not by the pipeline: a
    call either returns the candidate completions or raises RemoteCallError.
    """

    def __init__(
            self,
            client: AsyncOpenAI,
            model_name: str,
            temperature: float = 0.3,
            request_timeout: float = 120.0,
            max_retries: int = 3,
            base_delay: float = 1.0
    ):
        self.client = client
        self.model_name = model_name
        self.temperature = temperature
        self.request_timeout = request_timeout
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay

    async def complete(self, messages: Sequence[ChatCompletionMessageParam]) -> List[str]:
        """
        Send ``messages`` and return the text of every returned choice.

        Raises:
            RemoteCallError: If the API keeps failing after all retries, or
                fails in a way retrying cannot fix (bad key, bad request).
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self.client.chat.completions.create(
                    model=self.model_name,
                    messages=list(messages),
                    temperature=self.temperature,
                    timeout=self.request_timeout,
                )
                return [choice.message.content or "" for choice in response.choices]
            except OpenAIError as api_exc:
                logger.error(f"API error occurred: {api_exc.__class__.__name__} - {api_exc}")
                if not _is_retryable(api_exc):
                    raise RemoteCallError(f"Chat completion failed: {api_exc}") from api_exc
                if attempt >= self.max_retries:
                    raise RemoteCallError(
                        f"Chat completion failed after {self.max_retries} attempts: {api_exc}"
                    ) from api_exc
                delay = _retry_delay(attempt, self.base_delay, api_exc)
                logger.info(
                    f"Retrying request to /chat/completions in {delay:.2f} seconds "
                    f"(Attempt {attempt}/{self.max_retries})"
                )
                await asyncio.sleep(delay)
        raise RemoteCallError("Chat completion loop ended without a response.")


class EchoChatClient:
    """Dry-run client: answers every request with the user message unchanged."""

    async def complete(self, messages: Sequence[ChatCompletionMessageParam]) -> List[str]:
        user_contents = [message["content"] for message in messages if message["role"] == "user"]
        return user_contents[-1:]
