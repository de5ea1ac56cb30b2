from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol

from jobstream.channel.service import ChannelManager
from jobstream.channel.types import ChannelEventName
from jobstream.jobs.assembler import StreamAssembler
from jobstream.jobs.idempotency import IdempotencyKeyGenerator
from jobstream.jobs.types import ACTIVE_STATES, TERMINAL_STATES, InbandStatus, Job, JobSnapshot, JobState

logger = logging.getLogger(__name__)


class SubmissionError(RuntimeError):
    pass


class CancellationError(RuntimeError):
    pass


class ProtocolError(RuntimeError):
    pass


class JobConflictError(RuntimeError):
    pass


class InvalidJobStateError(RuntimeError):
    pass


class InvalidJobInputError(ValueError):
    pass


class JobGateway(Protocol):
    async def submit_job(self, input_text: str, idempotency_key: str) -> str: ...

    async def cancel_job(self, job_id: str) -> None: ...


ChangeListener = Callable[[JobSnapshot], Any]

ALLOWED_TRANSITIONS: dict[JobState, set[JobState]] = {
    JobState.IDLE: {JobState.SUBMITTING},
    JobState.SUBMITTING: {JobState.PROCESSING, JobState.FAILED},
    JobState.PROCESSING: {JobState.COMPLETED, JobState.CANCELLED},
    JobState.COMPLETED: {JobState.IDLE},
    JobState.CANCELLED: {JobState.IDLE},
    JobState.FAILED: {JobState.IDLE},
}


def validate_job_input(raw_input: str) -> str:
    if not isinstance(raw_input, str) or raw_input.strip() == "":
        raise InvalidJobInputError("Input string cannot be empty or white space")
    return raw_input


class JobStateMachine:
    """Tracks the single job of a client session.

    Channel events drive the job through PROCESSING to a terminal state. The
    first terminal event received from the channel wins: a cancel request that
    fails after completion already landed is logged and dropped, while one that
    fails mid-processing is reported through ``last_error`` until a terminal
    event supersedes it.

    Events that arrive while the submission is still in flight are held in
    arrival order and replayed once the job id is known.
    """

    def __init__(
        self,
        gateway: JobGateway,
        *,
        key_generator: IdempotencyKeyGenerator | None = None,
        inband_status_markers: bool = True,
    ):
        self._gateway = gateway
        self._keys = key_generator or IdempotencyKeyGenerator()
        self._inband_status_markers = inband_status_markers
        self._assembler = StreamAssembler()
        self._buffered: list[tuple[ChannelEventName, tuple[Any, ...], str | None]] = []
        self._listeners: list[ChangeListener] = []
        self._cancel_in_flight: Job | None = None
        self._cancel_error_pending = False
        self._job = self._new_job()

    @property
    def state(self) -> JobState:
        return self._job.state

    @property
    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            id=self._job.id,
            idempotency_key=self._job.idempotency_key,
            state=self._job.state,
            expected_length=self._assembler.expected_length,
            received_count=self._assembler.received_count,
            assembled_text=self._assembler.text,
            progress=self._assembler.progress,
            last_error=self._job.last_error,
        )

    def on_change(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def bind(self, channel: ChannelManager) -> None:
        channel.on_event(ChannelEventName.MESSAGE_LENGTH, self.handle_message_length)
        channel.on_event(ChannelEventName.RECEIVE_NOTIFICATION, self.handle_fragment)
        channel.on_event(ChannelEventName.PROCESSING_COMPLETED, self.handle_completed)
        channel.on_event(ChannelEventName.PROCESSING_CANCELLED, self.handle_cancelled)

    async def submit(self, input_text: str) -> JobSnapshot:
        validated = validate_job_input(input_text)
        if self._job.state in TERMINAL_STATES:
            self.reset()
        if self._job.state != JobState.IDLE:
            raise JobConflictError(f"A job is already {self._job.state.value}")

        self._transition(JobState.SUBMITTING)
        self._assembler.clear()
        self._buffered.clear()
        self._notify()

        try:
            job_id = await self._gateway.submit_job(validated, self._job.idempotency_key)
        except SubmissionError as exc:
            self._fail_submission(str(exc))
            return self.snapshot
        except asyncio.CancelledError:
            self._fail_submission("Submission was interrupted")
            raise
        except Exception as exc:
            logger.exception("Unexpected error while submitting job")
            self._fail_submission(f"Submission failed: {exc}")
            return self.snapshot

        self._job.id = job_id
        self._transition(JobState.PROCESSING)
        logger.info("Job %s accepted (idempotency key %s)", job_id, self._job.idempotency_key)
        self._notify()

        pending, self._buffered = self._buffered, []
        for event_name, arguments, event_job_id in pending:
            self._route(event_name, arguments, event_job_id)
        return self.snapshot

    async def cancel(self) -> bool:
        job = self._job
        if job.state != JobState.PROCESSING or job.id is None:
            logger.debug("Cancel ignored while job is %s", job.state.value)
            return False
        if self._cancel_in_flight is job:
            logger.debug("Cancel already in flight for job %s", job.id)
            return False

        if self._cancel_error_pending:
            job.last_error = None
            self._cancel_error_pending = False
        self._cancel_in_flight = job
        try:
            await self._gateway.cancel_job(job.id)
        except CancellationError as exc:
            if self._job is not job or job.state != JobState.PROCESSING:
                logger.info("Cancel request for job %s failed after the job ended; ignoring: %s", job.id, exc)
                return False
            logger.warning("Cancel request for job %s failed: %s", job.id, exc)
            job.last_error = str(exc)
            self._cancel_error_pending = True
            self._notify()
            return False
        finally:
            if self._cancel_in_flight is job:
                self._cancel_in_flight = None

        logger.info("Cancellation requested for job %s", job.id)
        return True

    def reset(self) -> JobSnapshot:
        state = self._job.state
        if state == JobState.IDLE:
            return self.snapshot
        if state in ACTIVE_STATES:
            raise InvalidJobStateError(f"Cannot reset while job is {state.value}")
        self._enforce_transition(state, JobState.IDLE)
        self._job = self._new_job()
        self._assembler.clear()
        self._buffered.clear()
        self._cancel_error_pending = False
        self._notify()
        return self.snapshot

    def handle_message_length(self, total: Any, job_id: str | None = None) -> None:
        self._route(ChannelEventName.MESSAGE_LENGTH, (total,), job_id)

    def handle_fragment(self, fragment: Any, job_id: str | None = None) -> None:
        self._route(ChannelEventName.RECEIVE_NOTIFICATION, (fragment,), job_id)

    def handle_completed(self, job_id: str | None = None) -> None:
        self._route(ChannelEventName.PROCESSING_COMPLETED, (), job_id)

    def handle_cancelled(self, job_id: str | None = None) -> None:
        self._route(ChannelEventName.PROCESSING_CANCELLED, (), job_id)

    def _route(self, event_name: ChannelEventName, arguments: tuple[Any, ...], job_id: str | None) -> None:
        if self._job.state == JobState.SUBMITTING:
            self._buffered.append((event_name, arguments, job_id))
            return
        try:
            self._check_applicable(event_name, job_id)
            self._apply(event_name, arguments)
        except ProtocolError as exc:
            logger.warning("Ignoring channel event: %s", exc)
            return
        self._notify()

    def _check_applicable(self, event_name: ChannelEventName, job_id: str | None) -> None:
        if self._job.state != JobState.PROCESSING:
            raise ProtocolError(f"{event_name.value} received while job is {self._job.state.value}")
        if job_id is not None and job_id != self._job.id:
            raise ProtocolError(f"{event_name.value} for job {job_id} does not match tracked job {self._job.id}")

    def _apply(self, event_name: ChannelEventName, arguments: tuple[Any, ...]) -> None:
        if event_name == ChannelEventName.MESSAGE_LENGTH:
            self._assembler.apply_length(self._coerce_length(arguments[0]))
        elif event_name == ChannelEventName.RECEIVE_NOTIFICATION:
            self._apply_fragment(arguments[0])
        elif event_name == ChannelEventName.PROCESSING_COMPLETED:
            self._complete()
        elif event_name == ChannelEventName.PROCESSING_CANCELLED:
            self._cancelled()

    def _apply_fragment(self, fragment: Any) -> None:
        if fragment is None:
            raise ProtocolError("ReceiveNotification carried no fragment")
        text = fragment if isinstance(fragment, str) else str(fragment)
        if self._inband_status_markers:
            if text.startswith(InbandStatus.PROCESSING_STARTED.value):
                return
            if text.startswith(InbandStatus.PROCESSING_COMPLETED.value):
                self._complete()
                return
            if text.startswith(InbandStatus.PROCESSING_CANCELLED.value):
                self._cancelled()
                return
        self._assembler.apply_fragment(text)

    def _coerce_length(self, total: Any) -> int:
        if isinstance(total, bool):
            raise ProtocolError(f"MessageLength carried a non-integer total: {total!r}")
        try:
            return int(total)
        except (TypeError, ValueError) as exc:
            raise ProtocolError(f"MessageLength carried a non-integer total: {total!r}") from exc

    def _complete(self) -> None:
        self._transition(JobState.COMPLETED)
        self._assembler.complete()
        self._clear_cancel_error()
        logger.info("Job %s completed with %d fragments", self._job.id, self._assembler.received_count)

    def _cancelled(self) -> None:
        self._transition(JobState.CANCELLED)
        self._assembler.clear()
        self._clear_cancel_error()
        logger.info("Job %s cancelled", self._job.id)

    def _fail_submission(self, message: str) -> None:
        self._buffered.clear()
        self._transition(JobState.FAILED)
        self._job.last_error = message
        logger.warning("Job submission failed: %s", message)
        self._notify()

    def _clear_cancel_error(self) -> None:
        if self._cancel_error_pending:
            self._job.last_error = None
            self._cancel_error_pending = False

    def _enforce_transition(self, from_state: JobState, to_state: JobState) -> None:
        if to_state not in ALLOWED_TRANSITIONS[from_state]:
            raise InvalidJobStateError(f"Illegal transition: {from_state.value} -> {to_state.value}")

    def _transition(self, to_state: JobState) -> None:
        self._enforce_transition(self._job.state, to_state)
        logger.debug("Job %s: %s -> %s", self._job.id, self._job.state.value, to_state.value)
        self._job.state = to_state

    def _new_job(self) -> Job:
        return Job(idempotency_key=self._keys.next())

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Job change listener failed")


def snapshot_to_dict(snapshot: JobSnapshot) -> dict[str, Any]:
    return {
        "id": snapshot.id,
        "idempotency_key": snapshot.idempotency_key,
        "state": snapshot.state.value,
        "expected_length": snapshot.expected_length,
        "received_count": snapshot.received_count,
        "assembled_text": snapshot.assembled_text,
        "progress": snapshot.progress,
        "last_error": snapshot.last_error,
    }
