"""Kernel services: advisory locks and the activity audit trail."""

from billing_kernel.services.activity_recorder import ActivityRecorder
from billing_kernel.services.base import BaseService
from billing_kernel.services.lock_service import LockGrant, LockService

__all__ = ["BaseService", "ActivityRecorder", "LockService", "LockGrant"]
