"""
Data models for the search subsystem.

Records handed around the pipeline are frozen dataclasses: the store owns the
canonical copy and every edit (redaction included) produces a new value.
Payloads crossing the remote boundary are pydantic models.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


PRICE_TIERS = ("$", "$$", "$$$", "$$$$")
DEFAULT_PRICE_TIER = "$$"
CONTACT_REDACTED = "*** Payment required to access ***"
CONTACT_UNAVAILABLE = "Contact information not available"
LOCATION_UNSPECIFIED = "Not specified"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Category:
    """Service category."""
    id: str
    name: str
    description: str = ""
    icon: Optional[str] = None
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class ServiceRecord:
    """A professional service listing as stored by the authoritative store."""
    id: str
    title: str
    description: str = ""
    category_id: Optional[str] = None
    price: str = DEFAULT_PRICE_TIER
    location: str = LOCATION_UNSPECIFIED
    rating: float = 0.0
    relevance: Optional[float] = None
    keywords: FrozenSet[str] = frozenset()
    contact_info: str = CONTACT_UNAVAILABLE
    image_url: Optional[str] = None
    source_url: Optional[str] = None
    verified: bool = False
    premium_only: bool = True
    view_count: int = 0
    last_scraped: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category_id": self.category_id,
            "price": self.price,
            "location": self.location,
            "rating": self.rating,
            "relevance": self.relevance,
            "keywords": sorted(self.keywords),
            "contact_info": self.contact_info,
            "image_url": self.image_url,
            "source_url": self.source_url,
            "verified": self.verified,
            "premium_only": self.premium_only,
            "view_count": self.view_count,
            "last_scraped": self.last_scraped.isoformat(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class SearchHistoryEntry:
    query: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"query": self.query, "timestamp": self.timestamp.isoformat()}


@dataclass(frozen=True)
class UserAccount:
    """The slice of a user account this subsystem reads and writes."""
    id: str
    verified: bool = False
    paid_service_ids: FrozenSet[str] = frozenset()
    recent_searches: Tuple[SearchHistoryEntry, ...] = ()


@dataclass(frozen=True)
class Caller:
    """Identity of the requester, as asserted by the upstream auth layer."""
    user_id: str
    verified: bool = False
    paid_service_ids: FrozenSet[str] = frozenset()

    def has_access_to(self, service_id: str) -> bool:
        """Proven access: verified and paid for this specific record."""
        return self.verified and service_id in self.paid_service_ids


@dataclass(frozen=True)
class SearchQuery:
    """A validated, normalized search request."""
    text: str
    filters: Dict[str, str] = field(default_factory=dict)
    page: int = 1
    limit: int = 20

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class SearchResultSet:
    """One page of ranked results; the unit stored in the search cache."""
    records: Tuple[ServiceRecord, ...]
    total: int
    page: int
    limit: int

    @property
    def has_next(self) -> bool:
        return self.page * self.limit < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [record.to_dict() for record in self.records],
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
        }


class RemoteCandidate(BaseModel):
    """A candidate record returned by the remote enrichment/search service."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = Field(..., min_length=1)
    description: str = ""
    category: Optional[str] = None
    price: Optional[str] = None
    location: Optional[str] = None
    rating: Optional[float] = None
    relevance: Optional[float] = None
    keywords: List[str] = Field(default_factory=list)
    contact_info: Optional[str] = Field(default=None, alias="contactInfo")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    source_url: Optional[str] = Field(default=None, alias="sourceUrl")

    @field_validator("rating")
    @classmethod
    def _clamp_rating(cls, value: Optional[float]) -> Optional[float]:
        if value is None:
            return None
        return min(5.0, max(0.0, value))

    @field_validator("relevance")
    @classmethod
    def _clamp_relevance(cls, value: Optional[float]) -> Optional[float]:
        if value is None:
            return None
        return min(100.0, max(0.0, value))

    @field_validator("price")
    @classmethod
    def _known_price_tier(cls, value: Optional[str]) -> Optional[str]:
        return value if value in PRICE_TIERS else None


class RemoteSearchResponse(BaseModel):
    """Parsed response of a remote search call."""
    success: bool
    records: List[RemoteCandidate] = Field(default_factory=list)
    message: Optional[str] = None


@dataclass(frozen=True)
class LocalRecord:
    """A record that came out of the local text query."""
    record: ServiceRecord
    kind: Literal["local"] = "local"


@dataclass(frozen=True)
class RemoteRecord:
    """A record resolved from a remote candidate.

    ``ingested`` is True when the candidate was inserted as a new record and
    False when it matched one that already existed.
    """
    record: ServiceRecord
    candidate: RemoteCandidate
    ingested: bool
    kind: Literal["remote"] = "remote"


SourcedRecord = Union[LocalRecord, RemoteRecord]


def canonical(sourced: SourcedRecord) -> ServiceRecord:
    """Normalize either side of the union to the canonical record shape."""
    if isinstance(sourced, LocalRecord):
        return sourced.record
    if isinstance(sourced, RemoteRecord):
        return sourced.record
    raise TypeError(f"Unsupported record source: {type(sourced).__name__}")
