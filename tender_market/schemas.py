"""
Pydantic schemas для валидации входящих запросов.

Validation failures are re-raised as tender_market.errors.ValidationError
by ``parse_request``.
"""

from typing import List, Optional, Tuple, Type, TypeVar
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from tender_market.errors import InvalidCoordinates, ValidationError
from tender_market.geo import format_coordinates, parse_coordinates
from tender_market.models import BidSortBy, SortDirection, TenderStatus, TenderUrgency

ModelT = TypeVar('ModelT', bound=BaseModel)

MAX_PHOTOS = 10


class CreateTenderRequest(BaseModel):
    """Схема для создания тендера."""

    client_id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=3, max_length=255)
    category: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=5000)
    location: str = Field(..., min_length=1, max_length=500)
    city: Optional[str] = Field(None, max_length=255)
    district: Optional[str] = Field(None, max_length=255)
    gps_coordinates: Optional[str] = Field(None, description="latitude,longitude")
    urgency: TenderUrgency
    photos: List[str] = Field(default_factory=list, max_length=MAX_PHOTOS)
    max_budget: Optional[int] = Field(None, ge=0)
    preferred_schedule: Optional[str] = Field(None, max_length=500)
    special_constraints: Optional[str] = Field(None, max_length=2000)

    @field_validator('title', 'category', 'description', 'location')
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator('gps_coordinates')
    @classmethod
    def validate_gps(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        try:
            return format_coordinates(parse_coordinates(v))
        except InvalidCoordinates as e:
            raise ValueError(e.message)


class CreateBidRequest(BaseModel):
    """Схема для подачи предложения."""

    professional_id: str = Field(..., min_length=1, max_length=64)
    price: int = Field(..., ge=0)
    estimated_duration: str = Field(..., min_length=1, max_length=100)
    guarantee_period: Optional[str] = Field(None, max_length=100)
    availability: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=5000)
    photos: List[str] = Field(default_factory=list, max_length=MAX_PHOTOS)
    has_guarantee: bool = False
    can_start_today: bool = False

    @field_validator('estimated_duration')
    @classmethod
    def strip_duration(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class TenderSearchFilters(BaseModel):
    """Фильтры списка тендеров; без status показываются только open."""

    category: Optional[str] = None
    status: Optional[TenderStatus] = None
    urgency: Optional[TenderUrgency] = None
    city: Optional[str] = None
    district: Optional[str] = None
    client_id: Optional[str] = None

    def to_conditions(self) -> dict:
        conditions = {
            key: value.value if hasattr(value, 'value') else value
            for key, value in self.model_dump(exclude_none=True).items()
        }
        conditions.setdefault('status', TenderStatus.open.value)
        return conditions


class BidListQuery(BaseModel):
    sort_by: BidSortBy = BidSortBy.price
    direction: SortDirection = SortDirection.asc


class PageQuery(BaseModel):
    """Пагинация списков: page с 1, limit ограничивается сверху."""

    page: int = 1
    limit: Optional[int] = None

    def window(self, default_limit: int, max_limit: int) -> Tuple[int, int]:
        """(offset, limit) for the query; out-of-range values are clamped."""
        limit = default_limit if self.limit is None else max(1, min(self.limit, max_limit))
        return (max(1, self.page) - 1) * limit, limit


def parse_request(model: Type[ModelT], data) -> ModelT:
    """
    Validate ``data`` (dict or model instance) against ``model``.

    Raises:
        ValidationError: naming the first failing field
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = '.'.join(str(part) for part in first.get('loc', ())) or None
        raise ValidationError(f"{field}: {first.get('msg')}" if field else first.get('msg'), field=field)
