from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from gigcalc.core.db import MongoModel
from gigcalc.utils import now

NOTES_MAX_LENGTH = 1000


class CalculationFigures(BaseModel):
    """Inputs and results of one earnings calculation, stored exactly as computed by the client."""

    # Inputs
    distance: float = Field(..., description="Distance driven, in the user's distance unit")
    time_hours: float = Field(..., description="Time spent on the gig, in hours")
    earnings: float = Field(..., description="Gross earnings for the gig")
    fuel_price: float = Field(..., description="Fuel price per gallon")
    fuel_efficiency: float = Field(..., description="Fuel efficiency in miles per gallon")
    depreciation_rate: float = Field(..., description="Wear and tear cost per mile")
    tax_rate: float = Field(..., description="Tax rate as a fraction of earnings")

    # Derived
    gross_hourly: float = Field(..., description="Earnings per hour before costs")
    net_hourly: float = Field(..., description="Earnings per hour after costs and tax")
    fuel_cost: float = Field(..., description="Fuel cost for the distance")
    depreciation_cost: float = Field(..., description="Vehicle wear and tear cost for the distance")
    estimated_tax: float = Field(..., description="Estimated tax owed on the earnings")
    gross_per_mile: float = Field(..., description="Earnings per mile before costs")
    net_per_mile: float = Field(..., description="Earnings per mile after costs and tax")

    score: int = Field(..., description="Overall gig score, 0-100 as computed by the client")


class CalculationCreate(CalculationFigures):
    """Payload for saving a calculation."""

    grade: str | None = Field(None, max_length=2, description="Letter grade; derived from score when omitted")
    notes: str | None = Field(None, max_length=NOTES_MAX_LENGTH)
    is_favorite: bool = False


class Calculation(MongoModel, CalculationFigures):
    """Saved calculation owned by one account.

    Indexed on (account_id, created_at).
    """

    account_id: UUID
    grade: str
    notes: str | None = None
    is_favorite: bool = False
    created_at: datetime = Field(default_factory=now)
