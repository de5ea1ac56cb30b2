from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class StreamAssembler:
    """Accumulates streamed fragments and derives an integer progress.

    Progress is ``floor(received * 100 / expected)`` once a positive total has
    been announced, clamped to 100 and never lowered. Fragments that arrive
    before the total still accumulate text; progress catches up when the total
    lands. The first positive total is kept for the rest of the job.
    """

    def __init__(self) -> None:
        self._chunks: list[str] = []
        self.expected_length = 0
        self.received_count = 0
        self.progress = 0

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    def apply_length(self, total: int) -> None:
        if total <= 0:
            return
        if self.expected_length > 0:
            if total != self.expected_length:
                logger.warning(
                    "Ignoring re-announced total %d; keeping %d",
                    total,
                    self.expected_length,
                )
            return
        self.expected_length = total
        self._recompute()

    def apply_fragment(self, text: str) -> None:
        self._chunks.append(text)
        self.received_count += 1
        self._recompute()

    def complete(self) -> None:
        self.progress = 100

    def clear(self) -> None:
        self._chunks.clear()
        self.expected_length = 0
        self.received_count = 0
        self.progress = 0

    def _recompute(self) -> None:
        if self.expected_length <= 0:
            return
        computed = min(100, self.received_count * 100 // self.expected_length)
        self.progress = max(self.progress, computed)
