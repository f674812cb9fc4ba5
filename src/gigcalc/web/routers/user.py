from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel, Field

from gigcalc.core.modules.account.models import AccountDetailsView
from gigcalc.web.deps import AppDep, AuthDep
from gigcalc.web.openapi import ErrorResponse

router = APIRouter(tags=["user"])


class UpdatePreferencesRequest(BaseModel):
    """Partial preferences update; omitted fields keep their current value."""

    fuel_price: float | None = Field(None, ge=0)
    fuel_efficiency: float | None = Field(None, gt=0)
    depreciation_rate: float | None = Field(None, ge=0)
    tax_rate: float | None = Field(None, ge=0, le=1)
    distance_unit: Literal["miles", "km"] | None = None
    currency: str | None = Field(None, min_length=3, max_length=3)


@router.get(
    "/api/user",
    summary="Get current user",
    description="Profile, preferences and calculation statistics of the signed-in account.",
    operation_id="getCurrentUser",
    responses={
        200: {"description": "Current account"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def get_current_user(app: AppDep, auth: AuthDep) -> AccountDetailsView:
    return await app.get_current_user(auth)


@router.patch(
    "/api/user/preferences",
    summary="Update preferences",
    description="Change calculator defaults for the signed-in account.",
    operation_id="updatePreferences",
    responses={
        200: {"description": "Updated account"},
        400: {"model": ErrorResponse, "description": "Invalid preferences"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def update_preferences(request: UpdatePreferencesRequest, app: AppDep, auth: AuthDep) -> AccountDetailsView:
    return await app.update_preferences(auth, request.model_dump(exclude_none=True))
