"""
JobService -- setup of jobs and cost codes.
"""

from uuid import UUID

from sqlalchemy import select

from billing_kernel.exceptions import ConflictError, NotFoundError, ValidationFailedError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.job import CostCode, CostCodeModel, Job, JobModel
from billing_kernel.services.base import BaseService

logger = get_logger("services.job")

JOB_STATUSES = ("active", "closed")


class JobService(BaseService):

    def create_job(self, name: str) -> Job:
        if not name or not name.strip():
            raise ValidationFailedError("Job name is required", field="name")
        job = JobModel(name=name.strip(), status="active")
        self.session.add(job)
        self.session.flush()
        logger.info("job_created", extra={"job_id": str(job.id), "job_name": job.name})
        return job.to_dto()

    def get_job(self, job_id: UUID) -> Job:
        job = self.session.get(JobModel, job_id)
        if job is None:
            raise NotFoundError("job", str(job_id))
        return job.to_dto()

    def set_job_status(self, job_id: UUID, status: str) -> Job:
        """Closed jobs drop out of all-jobs reconciliation."""
        if status not in JOB_STATUSES:
            raise ValidationFailedError(f"Unknown job status {status!r}", field="status")
        job = self.session.get(JobModel, job_id)
        if job is None:
            raise NotFoundError("job", str(job_id))
        job.status = status
        self.session.flush()
        logger.info("job_status_changed", extra={"job_id": str(job_id), "status": status})
        return job.to_dto()

    def create_cost_code(self, code: str, name: str) -> CostCode:
        existing = self.session.execute(
            select(CostCodeModel).where(CostCodeModel.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            raise ConflictError(f"Cost code {code} already exists")
        cost_code = CostCodeModel(code=code, name=name)
        self.session.add(cost_code)
        self.session.flush()
        return cost_code.to_dto()
