"""
Generic OpenAI-compatible completion backend.

Speaks `POST {url}/chat/completions` with `stream: true`, which covers
Zhipu BigModel (the default), Moonshot, DeepSeek, vLLM and friends.
"""

from __future__ import annotations

import logging

import httpx

from lawline.backends.base import BaseBackend
from lawline.errors import ProviderError

logger = logging.getLogger(__name__)


class OpenAICompatibleBackend(BaseBackend):
    """Backend for any service implementing the chat/completions endpoint."""

    def __init__(
        self,
        name: str,
        url: str,
        api_key: str = "",
        default_model: str = "",
        timeout: int = 120,
    ):
        super().__init__(name, url, default_model, timeout)
        self.api_key = api_key

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def forward_stream(self, messages: list[dict], model: str | None = None):
        """Forward a streaming request, yielding SSE lines."""
        body = {
            "model": model or self.default_model,
            "messages": messages,
            "stream": True,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST",
                    f"{self.url}/chat/completions",
                    json=body,
                    headers=self._headers(),
                ) as resp:
                    if resp.status_code >= 400:
                        detail = (await resp.aread()).decode("utf-8", errors="replace")
                        raise ProviderError(
                            f"HTTP {resp.status_code}: {detail[:200]}",
                            status_code=resp.status_code,
                        )
                    async for line in resp.aiter_lines():
                        if line:
                            yield line
        except httpx.TimeoutException:
            logger.warning("Backend '%s' stream timed out after %ss", self.name, self.timeout)
            raise
        except httpx.HTTPError as e:
            logger.warning("Backend '%s' stream failed: %s", self.name, e)
            raise

    async def health_check(self) -> bool:
        """Check the endpoint answers a model listing."""
        try:
            async with httpx.AsyncClient(timeout=5) as client:
                resp = await client.get(f"{self.url}/models", headers=self._headers())
                return resp.status_code == 200
        except httpx.HTTPError:
            return False
