"""
Record shapes for query results and request filters.

Rows come back from the pool as loosely-typed dicts; validate_rows() turns them
into these models and fails loudly when the shape does not match.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, computed_field

from ..common.errors import RowShapeError

ModelT = TypeVar("ModelT", bound=BaseModel)


class Advertiser(BaseModel):
    id: int = Field(..., gt=0)
    description: str
    feature_date: date


class Campaign(BaseModel):
    id: int = Field(..., gt=0)
    name: str
    advertiser_id: int = Field(..., gt=0)
    status: Optional[str] = None


class BlockingWindow(BaseModel):
    syndicator_id: int = Field(..., gt=0)
    campaign_id: int = Field(..., gt=0)
    start_time: datetime
    end_time: datetime
    avg_expected_hourly_spend: Optional[float] = None
    avg_current_period_spend: Optional[float] = None

    @computed_field
    @property
    def window_duration_minutes(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 60


class CampaignFilters(BaseModel):
    """Query parameters accepted by the campaigns route."""
    model_config = ConfigDict(populate_by_name=True)

    advertiser_id: int = Field(..., gt=0, alias="advertiserId")
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")


class WindowFilters(BaseModel):
    """Query parameters accepted by the blocking-windows route."""
    model_config = ConfigDict(populate_by_name=True)

    advertiser_id: Optional[int] = Field(None, gt=0, alias="advertiserId")
    campaign_id: Optional[int] = Field(None, gt=0, alias="campaignId")
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")


def validate_rows(rows: List[Dict[str, Any]], model: Type[ModelT]) -> List[ModelT]:
    """Validate raw result rows against a record model."""
    try:
        return TypeAdapter(List[model]).validate_python(rows)
    except ValidationError as e:
        raise RowShapeError(
            f"{len(e.errors())} row field(s) did not match {model.__name__}",
            errors=e.errors(include_url=False),
        ) from e
