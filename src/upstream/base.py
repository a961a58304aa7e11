"""Generation event source interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, Awaitable, Callable, Optional

from ..messages.types import GenerationEvent, GenerationRequest

DisconnectChecker = Callable[[], Awaitable[bool]]


class GenerationEventSource(ABC):
    """Produces generation events for a normalized request.

    ``stream`` returns a lazy, single-consumer, finite async iterator. Every
    ToolCallStart is followed by a matching ToolCallEnd unless the sequence
    is cut short by cancellation or an error, and a sequence carries at
    most one terminal StreamFinish or StreamError, never both.

    Implementations must stop producing events and release upstream
    resources once ``disconnect_checker`` reports a disconnect or the
    iterator is closed with ``aclose()``.
    """

    name = "base"

    @abstractmethod
    def stream(
        self,
        request: GenerationRequest,
        disconnect_checker: Optional[DisconnectChecker] = None,
    ) -> AsyncIterator[GenerationEvent]:
        raise NotImplementedError

    def describe(self) -> str:
        """Short human-readable description for startup logging."""
        return self.name
