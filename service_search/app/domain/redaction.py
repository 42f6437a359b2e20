"""
Contact-info redaction for premium records.
"""

import dataclasses
from typing import Iterable, List, Optional

from .models import CONTACT_REDACTED, Caller, ServiceRecord


def can_view_contact(record: ServiceRecord, caller: Optional[Caller]) -> bool:
    if not record.premium_only:
        return True
    return caller is not None and caller.has_access_to(record.id)


def redact_record(record: ServiceRecord, caller: Optional[Caller] = None) -> ServiceRecord:
    """Copy of ``record`` with the contact replaced when ``caller`` lacks access."""
    if can_view_contact(record, caller):
        return record
    return dataclasses.replace(record, contact_info=CONTACT_REDACTED)


def redact_records(records: Iterable[ServiceRecord], caller: Optional[Caller] = None) -> List[ServiceRecord]:
    return [redact_record(record, caller) for record in records]
