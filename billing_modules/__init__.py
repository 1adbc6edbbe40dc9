"""
Billing modules: one package per aggregate (invoices, draws, budget,
procurement, undo), each with frozen DTOs (``models``), ORM persistence
(``orm``), a status workflow where the aggregate has one (``workflows``)
and a flush-only service (``service``).
"""
