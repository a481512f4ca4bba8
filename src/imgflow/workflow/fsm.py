"""Submission lifecycle finite state machine.

Each :class:`~imgflow.workflow.submission.SubmissionWorkflow` owns one FSM
instance.  The FSM is purely a validation tool: it decides whether a
transition is legal and holds no data and no callbacks.  The workflow
performs the side effects (network calls, snapshot emission) around each
transition.
"""

from __future__ import annotations

from statemachine import State, StateMachine


class SubmissionLifecycleSM(StateMachine):
    """Seven-state lifecycle for one image submission.

    States:
        idle                -- Nothing selected.
        selected            -- Candidate image chosen, not yet checked.
        validated           -- MIME type and size accepted.
        uploading           -- Upload request in flight.
        awaiting_completion -- Job created, status being polled.
        completed           -- Remote processing finished successfully.
        failed              -- Upload, processing, polling, or cancellation failed.

    No state has ``final=True``: completed and failed both lead back to
    idle through ``reset``.
    """

    idle = State("idle", initial=True, value="idle")
    selected = State("selected", value="selected")
    validated = State("validated", value="validated")
    uploading = State("uploading", value="uploading")
    awaiting_completion = State("awaiting_completion", value="awaiting_completion")
    completed = State("completed", value="completed")
    failed = State("failed", value="failed")

    select = idle.to(selected) | selected.to(selected)
    pass_validation = selected.to(validated)
    fail_validation = selected.to(idle)
    start_upload = validated.to(uploading)
    accept_job = uploading.to(awaiting_completion)
    fail_upload = uploading.to(failed)
    retry = failed.to(selected)
    complete = awaiting_completion.to(completed)
    fail = awaiting_completion.to(failed)
    reset = completed.to(idle) | failed.to(idle) | selected.to(idle) | validated.to(idle)


def create_fsm(current_state: str = "idle") -> SubmissionLifecycleSM:
    """Create an FSM positioned at *current_state* (one of the state values)."""
    return SubmissionLifecycleSM(start_value=current_state)
