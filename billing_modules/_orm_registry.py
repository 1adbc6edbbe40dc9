"""
Imports every ORM model so ``Base.metadata`` knows all billing tables.

Called by ``billing_kernel.db.engine.create_tables`` before ``create_all``.
"""


def import_all_orm_models() -> None:
    import billing_kernel.models  # noqa: F401
    import billing_modules.budget.orm  # noqa: F401
    import billing_modules.draws.orm  # noqa: F401
    import billing_modules.invoices.orm  # noqa: F401
    import billing_modules.procurement.orm  # noqa: F401
    import billing_modules.undo.orm  # noqa: F401
