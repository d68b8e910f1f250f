"""
Streaming chat-completion client for the AI autocomplete proxy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Protocol

import requests

logger = logging.getLogger(__name__)

AI_MODELS = ("gpt-4", "gpt-3-turbo")
DEFAULT_MODEL = "gpt-4"


class CompletionRequestError(Exception):
    """Raised when the upstream request cannot be made.

    ``status_code`` and ``body`` are set when the failure carries an
    upstream-reported response.
    """

    def __init__(
        self, message: str, *, status_code: Optional[int] = None, body: Any = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class CompletionStreamError(Exception):
    """Raised when the upstream call fails before any data is streamed."""


class CompletionClient(Protocol):
    def stream_chat(self, messages: list[dict], model: str) -> Iterator[bytes]:
        """Open a streaming completion and return an iterator over raw SSE bytes."""
        ...


@dataclass
class OpenAICompletionClient:
    """Calls the OpenAI chat completions endpoint with ``stream=True``."""

    api_key: Optional[str]
    base_url: str = "https://api.openai.com/v1"

    def stream_chat(self, messages: list[dict], model: str) -> Iterator[bytes]:
        if not self.api_key:
            raise CompletionRequestError("OPENAI_API_KEY is not configured")

        url = f"{self.base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        body = {"model": model, "messages": messages, "stream": True}

        try:
            response = requests.post(url, headers=headers, json=body, stream=True)
        except (
            requests.exceptions.MissingSchema,
            requests.exceptions.InvalidSchema,
            requests.exceptions.InvalidURL,
        ) as e:
            raise CompletionRequestError(str(e)) from e
        except requests.RequestException as e:
            logger.warning("Completion request to %s failed: %s", url, e)
            raise CompletionStreamError(str(e)) from e

        if response.status_code >= 400:
            detail = response.text
            response.close()
            logger.warning(
                "Completion request returned %s: %s", response.status_code, detail
            )
            raise CompletionStreamError(
                f"Upstream returned status {response.status_code}"
            )

        return self._relay(response)

    def _relay(self, response: requests.Response) -> Iterator[bytes]:
        try:
            for chunk in response.iter_content(chunk_size=None):
                if chunk:
                    yield chunk
        except requests.RequestException as e:
            # Headers are already sent; the only thing left is to end the stream.
            logger.warning("Completion stream interrupted: %s", e)
        finally:
            response.close()
