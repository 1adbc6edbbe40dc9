"""
Tests for JobService: jobs and cost codes.
"""

from uuid import uuid4

import pytest

from billing_kernel.exceptions import ConflictError, NotFoundError, ValidationFailedError


class TestJobs:

    def test_create_trims_name(self, orchestrator):
        job = orchestrator.jobs.create_job("  Harbor View  ")
        assert job.name == "Harbor View"
        assert job.status == "active"

    def test_blank_name_rejected(self, orchestrator):
        with pytest.raises(ValidationFailedError):
            orchestrator.jobs.create_job("   ")

    def test_status_change(self, orchestrator, job):
        assert orchestrator.jobs.set_job_status(job.id, "closed").status == "closed"

    def test_unknown_status_rejected(self, orchestrator, job):
        with pytest.raises(ValidationFailedError):
            orchestrator.jobs.set_job_status(job.id, "archived")

    def test_unknown_job(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.jobs.get_job(uuid4())


class TestCostCodes:

    def test_duplicate_code_conflicts(self, orchestrator, cost_codes):
        with pytest.raises(ConflictError):
            orchestrator.jobs.create_cost_code("03-300", "Duplicate Concrete")
