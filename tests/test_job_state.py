"""Tests for the job status state machine."""

import pytest

from petstyle.pipeline.state import (
    InvalidTransitionError,
    JobStatus,
    can_transition,
    ensure_transition,
    is_terminal,
)


class TestTransitions:
    """Tests for legal and illegal status transitions."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (JobStatus.QUEUED, JobStatus.PROCESSING),
            (JobStatus.QUEUED, JobStatus.ERROR),
            (JobStatus.PROCESSING, JobStatus.DONE),
            (JobStatus.PROCESSING, JobStatus.ERROR),
        ],
    )
    def test_allowed(self, current, target):
        """The four forward edges are allowed."""
        assert can_transition(current, target)
        assert ensure_transition(current, target) == target

    @pytest.mark.parametrize(
        "current,target",
        [
            (JobStatus.QUEUED, JobStatus.DONE),
            (JobStatus.PROCESSING, JobStatus.QUEUED),
            (JobStatus.DONE, JobStatus.ERROR),
            (JobStatus.DONE, JobStatus.PROCESSING),
            (JobStatus.ERROR, JobStatus.QUEUED),
            (JobStatus.ERROR, JobStatus.DONE),
        ],
    )
    def test_rejected(self, current, target):
        """Skipping processing, going backwards and leaving a terminal state are illegal."""
        assert not can_transition(current, target)
        with pytest.raises(InvalidTransitionError) as exc_info:
            ensure_transition(current, target)
        assert exc_info.value.current == current
        assert exc_info.value.target == target

    def test_accepts_plain_strings(self):
        """Raw status strings from the database are accepted."""
        assert can_transition("queued", "processing")
        assert not can_transition("done", "queued")

    def test_unknown_status_raises(self):
        """Unknown status values are not silently accepted."""
        with pytest.raises(ValueError):
            can_transition("pending", "done")


class TestTerminal:
    """Tests for is_terminal."""

    def test_terminal_statuses(self):
        assert is_terminal(JobStatus.DONE)
        assert is_terminal("error")

    def test_non_terminal_statuses(self):
        assert not is_terminal(JobStatus.QUEUED)
        assert not is_terminal("processing")
