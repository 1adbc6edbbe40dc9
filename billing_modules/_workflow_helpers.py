"""Shared status-guard helper for module services."""

from uuid import UUID

from billing_kernel.domain.workflow import Transition, Workflow
from billing_kernel.exceptions import InvalidTransitionError


def require_transition(
    workflow: Workflow,
    entity_type: str,
    entity_id: UUID,
    current_status: str,
    action: str,
) -> Transition:
    """
    Return the transition for ``action`` out of ``current_status``.

    Raises:
        InvalidTransitionError: the workflow has no such transition.
    """
    transition = workflow.find_transition(current_status, action)
    if transition is None:
        raise InvalidTransitionError(entity_type, str(entity_id), current_status, action)
    return transition
