"""
Module: billing_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.
Invariants enforced:
    - Read-only access: selectors MUST NOT add, delete, flush or commit.
    - Selectors return frozen dataclasses, not ORM instances.
    - The caller owns the session and its transaction scope.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """Abstract base class for all selectors."""

    def __init__(self, session: Session):
        self.session = session
