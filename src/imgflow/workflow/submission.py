"""Submission workflow: select -> validate -> upload -> poll -> finalize.

The workflow is the only object presentation code talks to.  It owns the
selected image, the current job, and a :class:`SubmissionLifecycleSM` that
vets every transition.  After each transition (and each poll tick) an
immutable :class:`StatusSnapshot` is pushed through a reactivex
``BehaviorSubject``; subscribers never touch workflow state directly.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Sequence

from reactivex.abc import DisposableBase
from reactivex.subject import BehaviorSubject
from statemachine.exceptions import TransitionNotAllowed

from imgflow.config import ImgflowConfig
from imgflow.exceptions import (
    Cancelled,
    ErrorEnvelope,
    ErrorKind,
    ImgflowError,
    ServerError,
    ValidationError,
    WorkflowStateError,
)
from imgflow.models import (
    Job,
    JobStatus,
    SelectedResource,
    StatusSnapshot,
    WorkflowPhase,
)
from imgflow.operations import Operation, Resize, Thumbnail, Watermark
from imgflow.polling import CancellationToken, PollingEngine
from imgflow.tracing import Telemetry, get_telemetry
from imgflow.workflow.fsm import SubmissionLifecycleSM, create_fsm

logger = logging.getLogger(__name__)

SnapshotObserver = Callable[[StatusSnapshot], None]

UPLOADING_PERCENT = 30
AWAITING_FLOOR_PERCENT = 50
AWAITING_CEILING_PERCENT = 95


class SubmissionWorkflow:
    """Drives one image through upload and remote processing.

    One job is in flight per instance.  Typical use::

        workflow = SubmissionWorkflow(client, config)
        workflow.subscribe(render)
        workflow.select(SelectedResource.from_path("cat.jpg"))
        workflow.validate()
        job = await workflow.submit([Thumbnail(size=128)])
        workflow.reset()

    ``submit`` returns the completed job, or raises the
    :class:`~imgflow.exceptions.ImgflowError` that failed it; either way the
    outcome is also visible through :attr:`snapshot` and :attr:`error`.
    """

    def __init__(
        self,
        client,
        config: ImgflowConfig | None = None,
        engine: PollingEngine | None = None,
        telemetry: Telemetry | None = None,
    ) -> None:
        self._client = client
        self._config = config or ImgflowConfig()
        self._telemetry = telemetry
        self._engine = engine or PollingEngine(
            client.fetch_status,
            interval_ms=self._config.poll_interval_ms,
            max_attempts=self._config.poll_max_attempts,
            telemetry=telemetry,
        )
        self._fsm: SubmissionLifecycleSM = create_fsm()
        self._resource: SelectedResource | None = None
        self._job: Job | None = None
        self._error: ErrorEnvelope | None = None
        self._token: CancellationToken | None = None
        self._snapshots: BehaviorSubject = BehaviorSubject(
            StatusSnapshot(phase=WorkflowPhase.IDLE, percentage=0, description="Select an image")
        )

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def phase(self) -> WorkflowPhase:
        return WorkflowPhase(self._fsm.current_state_value)

    @property
    def job(self) -> Job | None:
        return self._job

    @property
    def selected_resource(self) -> SelectedResource | None:
        return self._resource

    @property
    def error(self) -> ErrorEnvelope | None:
        return self._error

    @property
    def snapshot(self) -> StatusSnapshot:
        return self._snapshots.value

    @property
    def telemetry(self) -> Telemetry:
        return self._telemetry or get_telemetry()

    def subscribe(self, observer: SnapshotObserver) -> DisposableBase:
        """Register *observer*; it immediately receives the current snapshot.

        An observer that raises is logged and does not affect the workflow.

        Returns:
            Disposable -- call ``dispose()`` to unsubscribe.
        """

        def _deliver(snapshot: StatusSnapshot) -> None:
            try:
                observer(snapshot)
            except Exception:
                logger.exception("Snapshot observer %r failed", observer)

        return self._snapshots.subscribe(on_next=_deliver)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def select(self, resource: SelectedResource) -> None:
        """Idle/Selected -> Selected.  No validation happens here."""
        self._transition("select")
        self._resource = resource
        self._error = None
        self._emit(WorkflowPhase.SELECTED, 0, f"Selected {resource.filename}")

    def validate(self) -> None:
        """Selected -> Validated, or back to Idle on a guard failure.

        Raises:
            ValidationError: Unsupported MIME type or file over the size
                ceiling.  The selection is discarded.
        """
        if self.phase is not WorkflowPhase.SELECTED or self._resource is None:
            raise WorkflowStateError(f"Cannot validate while {self.phase.value}")

        problem = self._check_resource(self._resource)
        if problem is not None:
            logger.warning("Rejected %s: %s", self._resource.filename, problem)
            self._transition("fail_validation")
            self._resource = None
            error = ValidationError(problem)
            self._error = error.envelope
            self._emit(WorkflowPhase.IDLE, 0, problem, error=error.envelope)
            raise error

        self._transition("pass_validation")
        self._emit(WorkflowPhase.VALIDATED, 0, "Ready to upload")

    async def submit(self, operations: Sequence[Operation]) -> Job:
        """Upload the validated image with *operations* and wait for the result.

        A workflow still in Selected is validated first.

        Returns:
            The completed job.

        Raises:
            ValidationError: Empty or invalid operation list (stays Validated).
            NetworkError / ServerError: Upload failed (back to Selected), or a
                status fetch failed / the job failed remotely (Failed).
            PollingTimeout: Attempt budget exhausted (Failed).
            Cancelled: :meth:`cancel` was called (Failed).
        """
        if self.phase is WorkflowPhase.SELECTED:
            self.validate()
        if self.phase is not WorkflowPhase.VALIDATED or self._resource is None:
            raise WorkflowStateError(f"Cannot submit while {self.phase.value}")

        ops = tuple(operations)
        problem = self._check_operations(ops)
        if problem is not None:
            error = ValidationError(problem)
            self._error = error.envelope
            self._emit(WorkflowPhase.VALIDATED, 0, problem, error=error.envelope)
            raise error

        resource = self._resource
        self._token = CancellationToken()
        try:
            attributes = {
                "submit.filename": resource.filename,
                "submit.size_bytes": resource.size_bytes,
                "submit.operations": len(ops),
            }
            with self.telemetry.span("workflow.submit", **attributes) as span:
                try:
                    job = await self._upload(resource, ops)
                    span.set_attribute("submit.job_id", job.id)
                    final = await self._await_completion(job)
                except ImgflowError as exc:
                    span.record_failure(exc, "submit")
                    raise
                span.record_job(final, "submit")
                span.set_attribute("submit.outcome", final.status.value)
                return final
        finally:
            self._token = None

    def cancel(self) -> bool:
        """Request cancellation of the in-progress submission.

        Takes effect at the next suspension boundary, never mid-fetch.

        Returns:
            ``True`` if a submission was in progress.
        """
        if self._token is None:
            return False
        logger.info("Cancellation requested (phase=%s)", self.phase.value)
        self._token.cancel()
        return True

    def reset(self) -> None:
        """Completed/Failed (or an unsent selection) -> Idle, clearing everything."""
        self._transition("reset")
        self._resource = None
        self._job = None
        self._error = None
        self._emit(WorkflowPhase.IDLE, 0, "Select an image")

    # ------------------------------------------------------------------
    # Internal: phases
    # ------------------------------------------------------------------

    async def _upload(self, resource: SelectedResource, ops: tuple[Operation, ...]) -> Job:
        self._transition("start_upload")
        self._error = None
        self._emit(WorkflowPhase.UPLOADING, UPLOADING_PERCENT, f"Uploading {resource.filename}...")
        try:
            job = await self._client.submit(resource, ops)
        except ImgflowError as exc:
            self._fail_upload(exc.envelope)
            raise
        except asyncio.CancelledError:
            self._fail_upload(Cancelled("Upload cancelled").envelope)
            raise

        self._job = job
        self._transition("accept_job")
        self._emit(
            WorkflowPhase.AWAITING_COMPLETION,
            AWAITING_FLOOR_PERCENT,
            self._progress_text(job),
            status=job.status.value,
        )
        return job

    async def _await_completion(self, job: Job) -> Job:
        try:
            final = await self._engine.poll(job.id, on_tick=self._on_tick, token=self._token)
        except ImgflowError as exc:
            self._fail(exc.envelope)
            raise
        except asyncio.CancelledError:
            self._fail(Cancelled("Processing cancelled").envelope)
            raise

        if final.status is JobStatus.FAILED:
            error = ServerError(final.error_message or "Processing failed on the server")
            self._fail(error.envelope)
            raise error

        self._transition("complete")
        self._emit(
            WorkflowPhase.COMPLETED,
            100,
            "Processing complete",
            status=self._job.status.value if self._job else final.status.value,
        )
        logger.info("Job %s completed", final.id)
        return self._job or final

    def _on_tick(self, update: Job) -> None:
        current = self._job or update
        self._job = current.merged_with(update)
        if self._job.status.is_terminal:
            return
        percentage = min(
            max(AWAITING_FLOOR_PERCENT, self.snapshot.percentage, self._job.progress),
            AWAITING_CEILING_PERCENT,
        )
        self._emit(
            WorkflowPhase.AWAITING_COMPLETION,
            percentage,
            self._progress_text(self._job),
            status=self._job.status.value,
        )

    def _fail_upload(self, envelope: ErrorEnvelope) -> None:
        """Uploading -> Failed -> Selected, keeping the file for a retry."""
        logger.warning("Upload failed (%s): %s", envelope.kind.value, envelope.message)
        self._error = envelope
        self._transition("fail_upload")
        self._emit(WorkflowPhase.FAILED, 0, f"Upload failed: {envelope.message}", error=envelope)
        self._transition("retry")
        name = self._resource.filename if self._resource else "image"
        self._emit(WorkflowPhase.SELECTED, 0, f"Selected {name}", error=envelope)

    def _fail(self, envelope: ErrorEnvelope) -> None:
        """AwaitingCompletion -> Failed."""
        logger.warning("Job %s failed (%s): %s", self._job_id, envelope.kind.value, envelope.message)
        self._error = envelope
        self._transition("fail")
        self._emit(
            WorkflowPhase.FAILED,
            0,
            _failure_text(envelope),
            status=self._job.status.value if self._job else None,
            error=envelope,
        )

    # ------------------------------------------------------------------
    # Internal: guards + plumbing
    # ------------------------------------------------------------------

    def _check_resource(self, resource: SelectedResource) -> str | None:
        content_type = resource.content_type.lower()
        if content_type not in self._config.allowed_mime_types:
            return f"Unsupported file type: {resource.content_type or 'unknown'}"
        if resource.size_bytes > self._config.max_file_size:
            limit_mib = self._config.max_file_size / (1024 * 1024)
            return f"File size {resource.size_bytes} bytes exceeds the {limit_mib:g} MiB limit"
        return None

    @staticmethod
    def _check_operations(ops: tuple[Operation, ...]) -> str | None:
        if not ops:
            return "Select at least one operation"
        for index, op in enumerate(ops):
            if not isinstance(op, (Thumbnail, Resize, Watermark)):
                return f"Invalid operation at index {index}: {op!r}"
        return None

    def _transition(self, event: str) -> None:
        before = self._fsm.current_state_value
        try:
            self._fsm.send(event)
        except TransitionNotAllowed as exc:
            raise WorkflowStateError(f"Cannot {event.replace('_', ' ')} while {before}") from exc
        self.telemetry.log.info("Workflow %s -> %s (%s)", before, self._fsm.current_state_value, event)

    def _emit(
        self,
        phase: WorkflowPhase,
        percentage: int,
        description: str,
        status: str | None = None,
        error: ErrorEnvelope | None = None,
    ) -> None:
        self._snapshots.on_next(
            StatusSnapshot(
                phase=phase,
                percentage=percentage,
                description=description,
                status=status,
                job_id=self._job_id,
                error=error,
            )
        )

    @property
    def _job_id(self) -> str | None:
        return self._job.id if self._job else None

    @staticmethod
    def _progress_text(job: Job) -> str:
        total = job.total_operations or len(job.requested_operations)
        return f"Processing: {job.processed_operations}/{total}"


def _failure_text(envelope: ErrorEnvelope) -> str:
    if envelope.kind is ErrorKind.POLLING_TIMEOUT:
        return "Still processing on the server; stopped waiting"
    if envelope.kind is ErrorKind.CANCELLED:
        return "Cancelled"
    return f"Processing failed: {envelope.message}"
