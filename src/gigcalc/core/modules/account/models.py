from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from gigcalc.core.db import MongoModel
from gigcalc.utils import now


class Preferences(BaseModel):
    """Calculator defaults pre-filled for the user."""

    fuel_price: float = Field(3.5, description="Fuel price per gallon")
    fuel_efficiency: float = Field(25.0, description="Vehicle fuel efficiency in miles per gallon")
    depreciation_rate: float = Field(0.1, description="Vehicle wear and tear cost per mile")
    tax_rate: float = Field(0.25, description="Estimated tax rate as a fraction of earnings")
    distance_unit: Literal["miles", "km"] = "miles"
    currency: str = "USD"


class Account(MongoModel):
    """Authenticated end user, keyed by the identity provider's subject id.

    Indexed on (provider, provider_user_id) - unique.
    """

    provider: str
    provider_user_id: str
    email: str | None = None
    display_name: str | None = None
    picture_url: str | None = None
    preferences: Preferences = Field(default_factory=Preferences)
    created_at: datetime = Field(default_factory=now)
    last_authenticated_at: datetime = Field(default_factory=now)


class AccountStats(BaseModel):
    """Aggregate figures over an account's saved calculations."""

    total_calculations: int = 0
    favorite_calculations: int = 0
    average_score: float | None = None
    best_score: int | None = None
    total_earnings: float = 0.0
    total_distance: float = 0.0


class AccountView(BaseModel):
    """Public profile of an account (API representation)."""

    id: UUID = Field(..., description="Account ID")
    email: str | None = Field(None, description="Email address")
    name: str | None = Field(None, description="Display name")
    picture_url: str | None = Field(None, description="Profile picture URL")

    @classmethod
    def from_domain(cls, account: Account) -> "AccountView":
        """Create view model from domain model."""
        return cls(id=account.id, email=account.email, name=account.display_name, picture_url=account.picture_url)


class AccountDetailsView(AccountView):
    """Profile plus preferences and statistics for the current user."""

    preferences: Preferences
    stats: AccountStats
    created_at: datetime

    @classmethod
    def build(cls, account: Account, stats: AccountStats) -> "AccountDetailsView":
        return cls(
            id=account.id,
            email=account.email,
            name=account.display_name,
            picture_url=account.picture_url,
            preferences=account.preferences,
            stats=stats,
            created_at=account.created_at,
        )
