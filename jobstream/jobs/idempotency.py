from __future__ import annotations

from uuid import uuid4


class IdempotencyKeyGenerator:
    def next(self) -> str:
        return str(uuid4())
