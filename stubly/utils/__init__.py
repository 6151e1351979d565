"""Shared utilities: audit trail, keyed locks and input validation.

Convenience re-exports so that consumers can write
``from stubly.utils import KeyedLock``.
"""

from stubly.utils.audit import AuditEvent, log_audit_event
from stubly.utils.locks import KeyedLock
from stubly.utils.validation import looks_like_email, validate_registration

__all__ = [
    "AuditEvent",
    "KeyedLock",
    "log_audit_event",
    "looks_like_email",
    "validate_registration",
]
