"""
Procurement Module (``billing_modules.procurement``).

Purchase orders with cost-coded line items (committed spend), and change
orders whose invoiced amount is derived from tagged invoice allocations.
"""

from billing_modules.procurement.models import (
    ChangeOrder,
    POLineItem,
    POLineRequest,
    PurchaseOrder,
)

__all__ = [
    "ChangeOrder",
    "POLineItem",
    "POLineRequest",
    "PurchaseOrder",
]
