"""Submission workflow: lifecycle FSM, orchestrator, and progress display."""

from imgflow.workflow.fsm import SubmissionLifecycleSM, create_fsm
from imgflow.workflow.progress import SubmissionProgressTracker
from imgflow.workflow.submission import SubmissionWorkflow

__all__ = [
    "SubmissionLifecycleSM",
    "SubmissionProgressTracker",
    "SubmissionWorkflow",
    "create_fsm",
]
