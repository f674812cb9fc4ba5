"""Calculation endpoints. Records of other accounts are reported as not found."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from gigcalc.core.modules.calculation.models import NOTES_MAX_LENGTH, Calculation, CalculationCreate
from gigcalc.core.pagination import PaginationResult
from gigcalc.web.deps import AppDep, AuthDep
from gigcalc.web.openapi import ErrorResponse

router: APIRouter = APIRouter(tags=["calculations"])


class SetFavoriteRequest(BaseModel):
    is_favorite: bool = Field(..., description="Whether the calculation is marked as favorite")


class UpdateNotesRequest(BaseModel):
    notes: str | None = Field(None, max_length=NOTES_MAX_LENGTH, description="Free-text note; empty or null clears it")


@router.post(
    "/api/calculations",
    summary="Save calculation",
    description="Store a calculation for the signed-in account. Figures are saved as sent.",
    operation_id="createCalculation",
    status_code=201,
    responses={
        201: {"description": "Calculation saved"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def create_calculation(request: CalculationCreate, app: AppDep, auth: AuthDep) -> Calculation:
    return await app.create_calculation(auth, request)


@router.get(
    "/api/calculations",
    summary="List calculations",
    description="Paginated calculations of the signed-in account, newest first.",
    operation_id="listCalculations",
    responses={
        200: {"description": "Paginated list of calculations"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def list_calculations(
    app: AppDep,
    auth: AuthDep,
    limit: Annotated[int, Query(ge=1, le=100, description="Maximum items to return")] = 50,
    offset: Annotated[int, Query(ge=0, description="Number of items to skip")] = 0,
    favorite_only: Annotated[
        bool, Query(alias="favoriteOnly", description="Return only favorite calculations")
    ] = False,
) -> PaginationResult[Calculation]:
    return await app.list_calculations(auth, limit, offset, favorite_only)


@router.get(
    "/api/calculations/{calculation_id}",
    summary="Get calculation",
    operation_id="getCalculation",
    responses={
        200: {"description": "Calculation"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        404: {"model": ErrorResponse, "description": "Calculation not found"},
    },
)
async def get_calculation(calculation_id: UUID, app: AppDep, auth: AuthDep) -> Calculation:
    return await app.get_calculation(auth, calculation_id)


@router.put(
    "/api/calculations/{calculation_id}/favorite",
    summary="Mark or unmark favorite",
    operation_id="setCalculationFavorite",
    responses={
        200: {"description": "Updated calculation"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        404: {"model": ErrorResponse, "description": "Calculation not found"},
    },
)
async def set_favorite(calculation_id: UUID, request: SetFavoriteRequest, app: AppDep, auth: AuthDep) -> Calculation:
    return await app.set_calculation_favorite(auth, calculation_id, request.is_favorite)


@router.put(
    "/api/calculations/{calculation_id}/notes",
    summary="Update notes",
    operation_id="updateCalculationNotes",
    responses={
        200: {"description": "Updated calculation"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        404: {"model": ErrorResponse, "description": "Calculation not found"},
    },
)
async def update_notes(calculation_id: UUID, request: UpdateNotesRequest, app: AppDep, auth: AuthDep) -> Calculation:
    return await app.update_calculation_notes(auth, calculation_id, request.notes)


@router.delete(
    "/api/calculations/{calculation_id}",
    summary="Delete calculation",
    operation_id="deleteCalculation",
    status_code=204,
    responses={
        204: {"description": "Calculation deleted"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        404: {"model": ErrorResponse, "description": "Calculation not found"},
    },
)
async def delete_calculation(calculation_id: UUID, app: AppDep, auth: AuthDep) -> None:
    await app.delete_calculation(auth, calculation_id)
