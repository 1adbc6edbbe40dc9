"""
Draw Workflow (``billing_modules.draws.workflows``).

draft -> submitted -> funded | partially_funded | overfunded, with
submitted -> draft as the unsubmit reversal.  The funding action is
chosen from the funded amount versus the draw total.
"""

from billing_kernel.domain.statuses import DrawStatus as S
from billing_kernel.domain.workflow import Guard, Transition, Workflow
from billing_kernel.logging_config import get_logger

logger = get_logger("modules.draws.workflows")


NO_OTHER_DRAFT = Guard(
    name="no_other_draft",
    description="The job has no other current draft draw",
)

FUNDING_MATCHES_TOTAL = Guard(
    name="funding_matches_total",
    description="Funded amount within tolerance of the draw total",
)


DRAW_WORKFLOW = Workflow(
    name="billing_draw",
    description="Lender draw request lifecycle",
    initial_state=S.DRAFT.value,
    states=tuple(s.value for s in S),
    terminal_states=(S.FUNDED.value, S.PARTIALLY_FUNDED.value, S.OVERFUNDED.value),
    transitions=(
        Transition(S.DRAFT.value, S.SUBMITTED.value, action="submit"),
        Transition(S.SUBMITTED.value, S.DRAFT.value, action="unsubmit", guard=NO_OTHER_DRAFT),
        Transition(S.SUBMITTED.value, S.FUNDED.value, action="fund", guard=FUNDING_MATCHES_TOTAL),
        Transition(S.SUBMITTED.value, S.PARTIALLY_FUNDED.value, action="fund_short"),
        Transition(S.SUBMITTED.value, S.OVERFUNDED.value, action="fund_over"),
    ),
)

logger.info(
    "draw_workflow_registered",
    extra={
        "workflow_name": DRAW_WORKFLOW.name,
        "state_count": len(DRAW_WORKFLOW.states),
        "transition_count": len(DRAW_WORKFLOW.transitions),
        "initial_state": DRAW_WORKFLOW.initial_state,
    },
)
