"""
BaseService -- abstract base for billing services.

Services receive a SQLAlchemy ``Session`` from the caller and persist via
``session.flush()``; they never commit or roll back.  The caller (the
``BillingLedger`` facade or a test) owns the transaction, which is what
lets one operation touch invoice, allocations, draw, budget lines and PO
lines atomically.
"""

from abc import ABC

from sqlalchemy.orm import Session

from billing_kernel.config import BillingConfig
from billing_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for services.

    Guarantees:
        - The service never calls ``session.commit()`` or ``session.rollback()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.config = config or BillingConfig.with_defaults()
