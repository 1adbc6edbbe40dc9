"""Pure domain types for the billing core: clock, workflows, statuses, tagged variants."""
