"""
Mail session implementations.

This package contains the protocol adapters the policy engines run against,
all implementing the abstract MailSession interface.

Supported Sessions:
    - IMAPSession: IMAP over SSL with Gmail extensions (X-GM-LABELS),
      in providers.imap
"""

from providers.base import (
    MailSession,
    HEADER_FIELDS,
    LABEL_FIELDS,
    STATUS_FIELDS,
)

__all__ = [
    "MailSession",
    "HEADER_FIELDS",
    "LABEL_FIELDS",
    "STATUS_FIELDS",
]
