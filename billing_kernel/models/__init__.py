"""Kernel ORM models: jobs, cost codes, advisory locks, activity trail."""

from billing_kernel.models.activity import ActivityEntry, DrawActivityModel, InvoiceActivityModel
from billing_kernel.models.job import CostCode, CostCodeModel, Job, JobModel
from billing_kernel.models.lock import EntityLockModel

__all__ = [
    "Job",
    "JobModel",
    "CostCode",
    "CostCodeModel",
    "EntityLockModel",
    "ActivityEntry",
    "InvoiceActivityModel",
    "DrawActivityModel",
]
