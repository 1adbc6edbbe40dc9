"""
Invoice Workflow (``billing_modules.invoices.workflows``).

Responsibility
--------------
Declares the invoice status state machine.  ``InvoiceService`` and
``DrawService`` look up ``(current status, action)`` here before every
status change and raise ``InvalidTransitionError`` when there is no
match.  Guards name the precondition the owning service evaluates.

Undo restores a captured status directly and does not go through this
workflow.
"""

from billing_kernel.domain.statuses import InvoiceStatus as S
from billing_kernel.domain.workflow import Guard, Transition, Workflow
from billing_kernel.logging_config import get_logger

logger = get_logger("modules.invoices.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

ALLOCATIONS_VALID = Guard(
    name="allocations_valid",
    description="Allocations present, cost-coded and within remaining unbilled",
)

DRAW_IS_DRAFT = Guard(
    name="draw_is_draft",
    description="Target draw is the job's current draft",
)

PARTIALLY_BILLED = Guard(
    name="partially_billed",
    description="Cumulative draw billing is below the invoice amount at submit",
)

FULLY_BILLED = Guard(
    name="fully_billed",
    description="Cumulative draw billing equals the invoice amount at funding",
)

DRAWS_FUNDED = Guard(
    name="draws_funded",
    description="Fully billed and every draw holding the invoice is funded",
)

CHILDREN_NOT_BILLED = Guard(
    name="children_not_billed",
    description="No split child is approved, in a draw or paid",
)

CHILDREN_SETTLED = Guard(
    name="children_settled",
    description="Every split child is paid or denied",
)

CHILD_UNSETTLED = Guard(
    name="child_unsettled",
    description="A split child left paid or denied",
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

INVOICE_WORKFLOW = Workflow(
    name="billing_invoice",
    description="Construction invoice billing lifecycle",
    initial_state=S.RECEIVED.value,
    states=tuple(s.value for s in S),
    transitions=(
        Transition(S.RECEIVED.value, S.NEEDS_APPROVAL.value, action="code"),
        Transition(S.NEEDS_APPROVAL.value, S.NEEDS_APPROVAL.value, action="code"),
        Transition(S.NEEDS_APPROVAL.value, S.APPROVED.value, action="approve", guard=ALLOCATIONS_VALID),
        Transition(S.APPROVED.value, S.NEEDS_APPROVAL.value, action="unapprove"),
        Transition(S.APPROVED.value, S.IN_DRAW.value, action="add_to_draw", guard=DRAW_IS_DRAFT),
        Transition(S.IN_DRAW.value, S.APPROVED.value, action="remove_from_draw", guard=DRAW_IS_DRAFT),
        Transition(S.IN_DRAW.value, S.NEEDS_APPROVAL.value, action="kick_back", guard=PARTIALLY_BILLED),
        Transition(S.IN_DRAW.value, S.PAID.value, action="pay", guard=FULLY_BILLED),
        Transition(S.PAID.value, S.IN_DRAW.value, action="unpay"),
        Transition(S.IN_DRAW.value, S.PAID.value, action="repay", guard=DRAWS_FUNDED),
        Transition(S.RECEIVED.value, S.DENIED.value, action="deny"),
        Transition(S.NEEDS_APPROVAL.value, S.DENIED.value, action="deny"),
        Transition(S.APPROVED.value, S.DENIED.value, action="deny"),
        Transition(S.DENIED.value, S.NEEDS_APPROVAL.value, action="resubmit"),
        Transition(S.RECEIVED.value, S.SPLIT.value, action="split"),
        Transition(S.NEEDS_APPROVAL.value, S.SPLIT.value, action="split"),
        Transition(S.SPLIT.value, S.RECEIVED.value, action="unsplit", guard=CHILDREN_NOT_BILLED),
        Transition(S.SPLIT.value, S.RECONCILED.value, action="reconcile_split", guard=CHILDREN_SETTLED),
        Transition(S.RECONCILED.value, S.SPLIT.value, action="reopen_split", guard=CHILD_UNSETTLED),
    ),
)

logger.info(
    "invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "state_count": len(INVOICE_WORKFLOW.states),
        "transition_count": len(INVOICE_WORKFLOW.transitions),
        "initial_state": INVOICE_WORKFLOW.initial_state,
    },
)
