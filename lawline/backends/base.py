"""
Base backend abstraction.
The relay talks to the completion provider only through this interface.
"""

from __future__ import annotations

import abc
import logging
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class BaseBackend(abc.ABC):
    """
    Abstract base for completion providers.
    A backend turns a message history into an incremental SSE stream.
    """

    def __init__(self, name: str, url: str, default_model: str = "", timeout: int = 120):
        self.name = name
        self.url = url.rstrip("/")
        self.default_model = default_model
        self.timeout = timeout

    @abc.abstractmethod
    def forward_stream(self, messages: list[dict], model: str | None = None) -> AsyncIterator[str]:
        """
        Request a streaming completion for `messages` (role/content dicts).
        Yields raw SSE lines (str). Raises on transport or provider failure.
        """
        ...

    @abc.abstractmethod
    async def health_check(self) -> bool:
        """Check if this backend is reachable and responsive."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self.url!r}>"
