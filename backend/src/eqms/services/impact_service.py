"""
Deviation Impact Service
Standalone impact assessment records attached to a deviation
"""
from datetime import datetime, timezone
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from eqms.core.exceptions import NotFoundError
from eqms.db.mongo import Collections, NO_ID, get_or_404, strip_id
from eqms.models.workflow import ImpactAnswer, ImpactKind
from eqms.services.deviation_service import impact_doc
from eqms.services.impact_validation import validate_answers
from eqms.services.projections import build_impact_out


class DeviationImpactService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.impacts = db[Collections.DEVIATION_IMPACTS]

    async def create(self, deviation_id: str, answers: List[ImpactAnswer], user: dict) -> dict:
        await get_or_404(self.db, Collections.DEVIATIONS, deviation_id, "Deviation")
        validated = await validate_answers(self.db, answers)
        impact = impact_doc(deviation_id, ImpactKind.INITIAL, validated, user["id"])
        await self.impacts.insert_one(impact)
        return await build_impact_out(self.db, strip_id(impact))

    async def list(self, deviation_id: Optional[str] = None) -> List[dict]:
        query = {"parent_id": deviation_id} if deviation_id else {}
        impacts = await self.impacts.find(query, NO_ID).sort("created_at", -1).to_list(length=None)
        return [await build_impact_out(self.db, i) for i in impacts]

    async def get(self, impact_id: str) -> dict:
        impact = await get_or_404(self.db, Collections.DEVIATION_IMPACTS, impact_id, "Deviation impact")
        return await build_impact_out(self.db, impact)

    async def update(self, impact_id: str, answers: List[ImpactAnswer]) -> dict:
        validated = await validate_answers(self.db, answers)
        impact = await self.impacts.find_one_and_update(
            {"id": impact_id},
            {"$set": {"answers": validated, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        if impact is None:
            raise NotFoundError("Deviation impact", impact_id)
        return await build_impact_out(self.db, strip_id(impact))

    async def delete(self, impact_id: str) -> None:
        result = await self.impacts.delete_one({"id": impact_id})
        if result.deleted_count == 0:
            raise NotFoundError("Deviation impact", impact_id)
