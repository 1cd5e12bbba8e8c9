"""
Append-only audit trail for orders and trades.
"""

from journal.writer import AuditJournal

__all__ = ["AuditJournal"]
