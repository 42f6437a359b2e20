"""
Request payloads accepted by the search API.
"""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

PriceTier = Literal["$", "$$", "$$$", "$$$$"]


class CategoryPayload(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    description: str = Field(default="", max_length=500)
    icon: Optional[str] = Field(default=None, max_length=10)
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("name must contain at least 2 non-blank characters")
        return value


class CategoryUpdatePayload(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    icon: Optional[str] = Field(default=None, max_length=10)
    is_active: Optional[bool] = None


class ServicePayload(BaseModel):
    """Fields accepted when creating a service record."""
    title: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=2000)
    category_id: str = Field(..., min_length=1)
    price: PriceTier = "$$"
    location: str = Field(..., min_length=1, max_length=200)
    rating: float = Field(default=0.0, ge=0.0, le=5.0)
    relevance: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    keywords: List[str] = Field(default_factory=list)
    contact_info: str = Field(..., min_length=1)
    image_url: Optional[str] = None
    source_url: Optional[str] = None
    verified: bool = False
    premium_only: bool = True

    @field_validator("keywords")
    @classmethod
    def _clean_keywords(cls, value: List[str]) -> List[str]:
        return [keyword.strip().lower() for keyword in value if keyword.strip()]


class ServiceUpdatePayload(BaseModel):
    """Partial update; only fields sent with a non-null value are applied."""
    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=2000)
    category_id: Optional[str] = Field(default=None, min_length=1)
    price: Optional[PriceTier] = None
    location: Optional[str] = Field(default=None, min_length=1, max_length=200)
    rating: Optional[float] = Field(default=None, ge=0.0, le=5.0)
    relevance: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    keywords: Optional[List[str]] = None
    contact_info: Optional[str] = Field(default=None, min_length=1)
    image_url: Optional[str] = None
    source_url: Optional[str] = None
    verified: Optional[bool] = None
    premium_only: Optional[bool] = None


class AccessGrantPayload(BaseModel):
    user_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)


class SearchRequest(BaseModel):
    """Raw search parameters; validated by the search pipeline itself."""
    query: Any = None
    category: Any = None
    location: Any = None
    price: Any = None
    page: Any = 1
    limit: Any = None
