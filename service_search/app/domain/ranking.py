"""
Merge, rank and paginate search results.
"""

from typing import Dict, Iterable, List, Tuple

from .models import ServiceRecord, SourcedRecord, canonical


def rank_key(record: ServiceRecord) -> Tuple[bool, float, float]:
    # Records with a relevance sort before those without, then relevance
    # descending, then rating descending.
    return (
        record.relevance is None,
        -(record.relevance or 0.0),
        -record.rating,
    )


def merge_records(sources: Iterable[SourcedRecord]) -> List[ServiceRecord]:
    """Union by record id (last write wins) and sort by rank."""
    merged: Dict[str, ServiceRecord] = {}
    for sourced in sources:
        record = canonical(sourced)
        merged[record.id] = record

    return sorted(merged.values(), key=rank_key)


def paginate(records: List[ServiceRecord], page: int, limit: int) -> List[ServiceRecord]:
    start = (page - 1) * limit
    return records[start:start + limit]
