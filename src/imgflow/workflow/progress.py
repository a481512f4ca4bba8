"""Rich progress display driven by workflow snapshots.

Renders a single bar for one submission:

* **Bar** -- the snapshot percentage (30 uploading, 50-95 processing, 100 done)
* **Description** -- the workflow phase
* **Status text** -- the snapshot description and any error message
"""

from __future__ import annotations

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from imgflow.models import StatusSnapshot, WorkflowPhase

_PHASE_STYLE = {
    WorkflowPhase.IDLE: "dim",
    WorkflowPhase.SELECTED: "cyan",
    WorkflowPhase.VALIDATED: "cyan",
    WorkflowPhase.UPLOADING: "blue",
    WorkflowPhase.AWAITING_COMPLETION: "yellow",
    WorkflowPhase.COMPLETED: "green",
    WorkflowPhase.FAILED: "red",
}


class SubmissionProgressTracker:
    """Rich progress bar that observes a :class:`SubmissionWorkflow`.

    Usage::

        tracker = SubmissionProgressTracker()
        with tracker:
            subscription = workflow.subscribe(tracker.on_snapshot)
            await workflow.submit(ops)
            subscription.dispose()
    """

    def __init__(self, console: Console | None = None) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
            console=console,
        )
        self._task: TaskID | None = None
        self.last_snapshot: StatusSnapshot | None = None

    def start(self) -> None:
        self._progress.start()
        self._task = self._progress.add_task("[dim]idle", total=100, status="")

    def stop(self) -> None:
        self._progress.stop()

    def __enter__(self) -> SubmissionProgressTracker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    def on_snapshot(self, snapshot: StatusSnapshot) -> None:
        """Observer callback: mirror *snapshot* onto the bar."""
        self.last_snapshot = snapshot
        if self._task is None:
            return
        style = _PHASE_STYLE.get(snapshot.phase, "white")
        status = snapshot.description
        if snapshot.error is not None and snapshot.error.message not in status:
            status = f"{status} ({snapshot.error.message})"
        self._progress.update(
            self._task,
            completed=snapshot.percentage,
            description=f"[{style}]{snapshot.phase.value.replace('_', ' ')}",
            status=_truncate(status),
        )


def _truncate(text: str, max_len: int = 60) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
