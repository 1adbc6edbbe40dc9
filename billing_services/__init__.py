"""
billing_services -- Package init and public API.

Responsibility:
    Transactional orchestration over the billing modules: the per-session
    ``BillingOrchestrator``, the ``BillingLedger`` operation surface, and
    the reconciliation service that feeds the pure checker with ledger
    snapshots.

Architecture position:
    Services -- the only layer that opens and commits transactions.

        billing_services/ -> billing_modules/  (allowed)
        billing_services/ -> billing_engines/  (allowed)
        billing_services/ -> billing_kernel/   (allowed)
        billing_modules/  -> billing_services/ (FORBIDDEN)

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from billing_kernel.logging_config import get_logger

logger = get_logger("services")

from billing_services.billing_ledger import BillingLedger
from billing_services.billing_orchestrator import BillingOrchestrator
from billing_services.ledger_selector import JobLedgerSelector
from billing_services.reconciliation_service import BillingReconciliationService, RepairReport

__all__ = [
    "BillingLedger",
    "BillingOrchestrator",
    "BillingReconciliationService",
    "JobLedgerSelector",
    "RepairReport",
]
