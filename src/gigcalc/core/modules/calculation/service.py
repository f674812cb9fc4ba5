from typing import Any
from uuid import UUID

import structlog
from pymongo import ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase

from gigcalc.core.core import Service
from gigcalc.core.modules.account.models import AccountStats
from gigcalc.core.modules.calculation.grading import grade_for_score
from gigcalc.core.modules.calculation.models import Calculation, CalculationCreate
from gigcalc.core.pagination import PaginationResult
from gigcalc.errors import NotFoundError

logger = structlog.get_logger(__name__)


class CalculationService(Service):
    """Stores calculations; every query is filtered by the owning account."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("calculations")

    async def on_start(self) -> None:
        """Create indexes for per-account listing, newest first."""
        await self._collection.create_index([("account_id", 1), ("created_at", -1)])

    async def create_calculation(self, account_id: UUID, data: CalculationCreate) -> Calculation:
        """Save a calculation verbatim, projecting the grade from the score when none was sent."""
        values = data.model_dump()
        if values["grade"] is None:
            values["grade"] = grade_for_score(data.score, self.core.config.grade_thresholds)
        calculation = Calculation(account_id=account_id, **values)
        await self._collection.insert_one(calculation.to_mongo())
        logger.debug("calculation_created", calculation_id=str(calculation.id), account_id=str(account_id))
        return calculation

    async def list_calculations(
        self, account_id: UUID, limit: int = 50, offset: int = 0, favorite_only: bool = False
    ) -> PaginationResult[Calculation]:
        """Get paginated calculations for an account, newest first."""
        query: dict[str, Any] = {"account_id": account_id}
        if favorite_only:
            query["is_favorite"] = True

        total = await self._collection.count_documents(query)
        cursor = self._collection.find(query).sort("created_at", -1).skip(offset).limit(limit)
        items = await Calculation.list_cursor(cursor)

        return PaginationResult(items=items, total=total, limit=limit, offset=offset)

    async def get_calculation(self, account_id: UUID, calculation_id: UUID) -> Calculation:
        """Get a calculation owned by the account. Other accounts' records look absent."""
        calculation = Calculation.from_mongo(
            await self._collection.find_one({"_id": calculation_id, "account_id": account_id})
        )
        if calculation is None:
            raise NotFoundError(f"Calculation '{calculation_id}' not found")
        return calculation

    async def set_favorite(self, account_id: UUID, calculation_id: UUID, is_favorite: bool) -> Calculation:
        return await self._update(account_id, calculation_id, {"is_favorite": is_favorite})

    async def update_notes(self, account_id: UUID, calculation_id: UUID, notes: str | None) -> Calculation:
        return await self._update(account_id, calculation_id, {"notes": notes or None})

    async def delete_calculation(self, account_id: UUID, calculation_id: UUID) -> None:
        result = await self._collection.delete_one({"_id": calculation_id, "account_id": account_id})
        if result.deleted_count == 0:
            raise NotFoundError(f"Calculation '{calculation_id}' not found")
        logger.debug("calculation_deleted", calculation_id=str(calculation_id), account_id=str(account_id))

    async def get_stats(self, account_id: UUID) -> AccountStats:
        """Aggregate totals over all of the account's calculations."""
        pipeline: list[dict[str, Any]] = [
            {"$match": {"account_id": account_id}},
            {
                "$group": {
                    "_id": None,
                    "total_calculations": {"$sum": 1},
                    "average_score": {"$avg": "$score"},
                    "best_score": {"$max": "$score"},
                    "total_earnings": {"$sum": "$earnings"},
                    "total_distance": {"$sum": "$distance"},
                }
            },
        ]
        cursor = await self._collection.aggregate(pipeline)
        groups = [group async for group in cursor]
        if not groups:
            return AccountStats()

        favorites = await self._collection.count_documents({"account_id": account_id, "is_favorite": True})
        group = groups[0]
        return AccountStats(
            total_calculations=group["total_calculations"],
            favorite_calculations=favorites,
            average_score=round(group["average_score"], 1) if group["average_score"] is not None else None,
            best_score=group["best_score"],
            total_earnings=group["total_earnings"],
            total_distance=group["total_distance"],
        )

    async def _update(self, account_id: UUID, calculation_id: UUID, changes: dict[str, Any]) -> Calculation:
        document = await self._collection.find_one_and_update(
            {"_id": calculation_id, "account_id": account_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        calculation = Calculation.from_mongo(document)
        if calculation is None:
            raise NotFoundError(f"Calculation '{calculation_id}' not found")
        return calculation
