from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class JobState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class InbandStatus(str, Enum):
    PROCESSING_STARTED = "ProcessingStarted"
    PROCESSING_COMPLETED = "ProcessingCompleted"
    PROCESSING_CANCELLED = "ProcessingCancelled"


ACTIVE_STATES = frozenset({JobState.SUBMITTING, JobState.PROCESSING})
TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.CANCELLED, JobState.FAILED})


@dataclass(slots=True)
class Job:
    idempotency_key: str
    id: str | None = None
    state: JobState = JobState.IDLE
    last_error: str | None = None


@dataclass(frozen=True)
class JobSnapshot:
    id: str | None
    idempotency_key: str
    state: JobState
    expected_length: int
    received_count: int
    assembled_text: str
    progress: int
    last_error: str | None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
