"""
Undo Module (``billing_modules.undo``).

Thirty-second undo window for invoice status actions and recoding.  An
entry captures the entity's prior state as a typed snapshot; executing
it restores that state and reverses derived PO and budget effects.
"""

from billing_modules.undo.models import UndoEntry, UndoResult

__all__ = ["UndoEntry", "UndoResult"]
