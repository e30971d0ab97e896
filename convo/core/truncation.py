"""History truncation: bounds the outgoing message list by a size budget.

The default size measure is the total number of content characters, compared
against ``token_limit * chars_per_token``. That is a rough stand-in for a
token count, not an exact one; pass ``size_fn`` to plug in a real tokenizer.
"""

from __future__ import annotations

from typing import Callable, Sequence

import structlog

from convo.core.types import Message

logger = structlog.get_logger()

SizeFn = Callable[[Sequence[Message]], int]


def content_length(messages: Sequence[Message]) -> int:
    """Total characters of message content."""
    return sum(len(m.content or "") for m in messages)


class HistoryTruncator:
    """Drops the oldest history turns until the request fits the budget."""

    def __init__(
        self,
        token_limit: int = 4000,
        chars_per_token: int = 4,
        size_fn: SizeFn | None = None,
    ) -> None:
        """Initialize the truncator.

        Args:
            token_limit: Approximate token budget for one request.
            chars_per_token: Characters assumed per token by the default
                             size measure. Ignored in spirit when ``size_fn``
                             returns true token counts; the budget is then
                             compared against ``token_limit`` directly.
            size_fn: Optional replacement size measure.
        """
        self.token_limit = token_limit
        self.chars_per_token = chars_per_token
        self._size_fn = size_fn

    @property
    def budget(self) -> int:
        if self._size_fn is not None:
            return self.token_limit
        return self.token_limit * self.chars_per_token

    def estimate(self, messages: Sequence[Message]) -> int:
        if self._size_fn is not None:
            return self._size_fn(messages)
        return content_length(messages)

    def fits(self, messages: Sequence[Message]) -> bool:
        return self.estimate(messages) <= self.budget

    def build(
        self,
        system_message: Message | None,
        history: Sequence[Message],
        user_message: Message,
    ) -> list[Message]:
        """Assemble ``[system] + history + [user]`` within the budget.

        History is trimmed from the front only. The system message and the
        new user message are always kept, even if they alone exceed the budget.
        """
        head = [system_message] if system_message is not None else []
        kept = list(history)
        dropped = 0

        while kept and not self.fits(head + kept + [user_message]):
            kept.pop(0)
            dropped += 1

        if dropped:
            logger.debug(
                "history_truncated",
                dropped=dropped,
                kept=len(kept),
                budget=self.budget,
            )

        return head + kept + [user_message]
