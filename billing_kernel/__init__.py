"""
billing_kernel -- foundation of the construction billing core.

Configuration, the typed error taxonomy, structured logging, the ledger-store
engine and declarative base, pure domain value types, jobs and cost codes,
advisory locks and the activity audit trail.  Nothing here imports from
``billing_engines``, ``billing_modules`` or ``billing_services`` at import
time.
"""
