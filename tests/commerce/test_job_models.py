"""Tests for job data models."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from agentmarket.commerce.jobs.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    VALID_JOB_TRANSITIONS,
    Job,
    JobStateTransition,
    JobStatus,
    JobType,
)


def _job(**overrides):
    fields = dict(
        id="job-123",
        requester_id="requester-1",
        type="worker",
        task="Summarize the quarterly report",
        budget=Decimal("12.00"),
        worker_id="worker-1",
    )
    fields.update(overrides)
    return Job(**fields)


class TestJob:
    """Tests for Job dataclass."""

    def test_create_basic_job(self):
        """Test creating a job with minimal required fields."""
        job = _job()

        assert job.id == "job-123"
        assert job.status == "posted"
        assert job.budget == Decimal("12.00")
        assert job.inputs == {}
        assert job.context == {}
        assert job.created_at is not None
        assert job.timeout_at is None

    def test_budget_coerced_to_decimal(self):
        """Numeric and string budgets become Decimal without float artifacts."""
        assert _job(budget="7.35").budget == Decimal("7.35")
        assert _job(budget=3).budget == Decimal("3")

    @pytest.mark.parametrize("budget", [0, -1, "0.00"])
    def test_invalid_budget(self, budget):
        """Test that non-positive budgets are rejected."""
        with pytest.raises(ValueError, match="Budget must be positive"):
            _job(budget=budget)

    def test_invalid_type(self):
        """Test that unknown job types are rejected."""
        with pytest.raises(ValueError, match="Invalid type"):
            _job(type="robot")

    def test_worker_job_requires_worker(self):
        """Worker jobs must name a worker."""
        with pytest.raises(ValueError, match="worker_id"):
            _job(worker_id=None)

    def test_skill_job_requires_skill(self):
        """Skill jobs must name a skill."""
        with pytest.raises(ValueError, match="skill_id"):
            _job(type="skill", worker_id=None)

    def test_invalid_status(self):
        """Test that unknown statuses are rejected."""
        with pytest.raises(ValueError, match="Invalid status"):
            _job(status="open")

    @pytest.mark.parametrize("rating", [0, 6])
    def test_invalid_rating(self, rating):
        """Ratings are 1-5."""
        with pytest.raises(ValueError, match="Rating"):
            _job(rating=rating)

    def test_status_properties(self):
        """is_active and is_terminal follow the status."""
        assert _job().is_active
        assert not _job().is_terminal
        assert _job(status="in_progress").is_active
        assert not _job(status="delivered").is_active
        assert not _job(status="delivered").is_terminal
        for status in ("approved", "rejected", "cancelled"):
            assert _job(status=status).is_terminal

    def test_is_skill_job(self):
        assert _job(type="skill", skill_id="add-logging", worker_id=None).is_skill_job
        assert not _job().is_skill_job

    def test_new_ids_are_unique(self):
        """Ids are allocated before any write and never collide."""
        assert len({Job.new_id() for _ in range(100)}) == 100

    def test_round_trip(self):
        """to_dict/from_dict preserve every field."""
        now = datetime.now(timezone.utc)
        job = _job(
            inputs={"pages": 3},
            context={"files": {"a.py": "print(1)"}},
            status="approved",
            deliverable_text="done",
            deliverable_url="https://example.com/r",
            deliverable_files={"report.md": "# Report"},
            rating=5,
            feedback="great",
            created_at=now,
            accepted_at=now,
            delivered_at=now,
            completed_at=now,
            timeout_at=now + timedelta(minutes=30),
        )

        data = job.to_dict()
        assert data["budget"] == "12.00"
        assert data["timeout_at"] == (now + timedelta(minutes=30)).isoformat()

        restored = Job.from_dict(data)
        assert restored == job


class TestJobTransitions:
    """Tests for the job state machine table."""

    def test_transition_table(self):
        """The lifecycle allows exactly these moves."""
        assert VALID_JOB_TRANSITIONS[JobStatus.POSTED] == {
            JobStatus.IN_PROGRESS,
            JobStatus.DELIVERED,
            JobStatus.CANCELLED,
        }
        assert VALID_JOB_TRANSITIONS[JobStatus.IN_PROGRESS] == {
            JobStatus.DELIVERED,
            JobStatus.CANCELLED,
        }
        assert VALID_JOB_TRANSITIONS[JobStatus.DELIVERED] == {
            JobStatus.APPROVED,
            JobStatus.REJECTED,
        }

    @pytest.mark.parametrize("status", ["approved", "rejected", "cancelled"])
    def test_terminal_statuses_have_no_exits(self, status):
        """Nothing leaves a terminal status."""
        job = _job(status=status)
        for target in JobStatus:
            assert not job.can_transition_to(target)

    def test_delivered_cannot_be_cancelled(self):
        """Delivered work is settled by approve or reject only."""
        job = _job(status="delivered")

        assert job.can_transition_to(JobStatus.APPROVED)
        assert job.can_transition_to(JobStatus.REJECTED)
        assert not job.can_transition_to(JobStatus.CANCELLED)

    def test_status_groups(self):
        """Active and terminal groups do not overlap."""
        assert ACTIVE_STATUSES == {"posted", "in_progress"}
        assert TERMINAL_STATUSES == {"approved", "rejected", "cancelled"}
        assert not ACTIVE_STATUSES & TERMINAL_STATUSES

    def test_job_type_values(self):
        assert [t.value for t in JobType] == ["skill", "worker"]


class TestJobStateTransition:
    """Tests for the audit record."""

    def test_defaults(self):
        """Creation transitions have no from_status and get a timestamp."""
        transition = JobStateTransition(id="t-1", job_id="job-123", to_status="posted")

        assert transition.from_status is None
        assert transition.actor_id is None
        assert transition.created_at is not None

    def test_round_trip(self):
        """to_dict/from_dict preserve every field."""
        transition = JobStateTransition(
            id="t-2",
            job_id="job-123",
            from_status="in_progress",
            to_status="cancelled",
            reason="deadline exceeded",
        )

        assert JobStateTransition.from_dict(transition.to_dict()) == transition
