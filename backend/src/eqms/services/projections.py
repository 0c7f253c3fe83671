"""
Read-side projections
Explicit joins that turn stored ids into the small nested shapes the API returns.
"""
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from eqms.db.mongo import Collections, NO_ID


async def _one(db: AsyncIOMotorDatabase, collection: str, entity_id: Optional[str], fields: List[str]) -> Optional[dict]:
    if not entity_id:
        return None
    doc = await db[collection].find_one({"id": entity_id}, NO_ID)
    if not doc:
        return None
    return {field: doc.get(field) for field in ["id", *fields]}


async def department_ref(db, department_id):
    return await _one(db, Collections.DEPARTMENTS, department_id, ["name", "code"])


async def user_ref(db, user_id):
    return await _one(db, Collections.USERS, user_id, ["name", "email"])


async def location_ref(db, location_id):
    return await _one(db, Collections.LOCATIONS, location_id, ["name", "location_code"])


async def equipment_ref(db, equipment_id):
    return await _one(db, Collections.EQUIPMENTS, equipment_id, ["name", "code"])


async def category_ref(db, collection, category_id):
    return await _one(db, collection, category_id, ["name"])


async def attachment_refs(db: AsyncIOMotorDatabase, attachment_ids: List[str]) -> List[dict]:
    if not attachment_ids:
        return []
    docs = await db[Collections.ATTACHMENTS].find(
        {"id": {"$in": attachment_ids}}, NO_ID
    ).to_list(length=None)
    by_id = {d["id"]: d for d in docs}
    return [
        {"id": a["id"], "url": a["url"], "type": a["type"]}
        for a in (by_id.get(i) for i in attachment_ids) if a
    ]


async def build_impact_out(db: AsyncIOMotorDatabase, impact: Optional[dict]) -> Optional[dict]:
    """Impact record with every answer joined to its question"""
    if not impact:
        return None
    question_ids = [a["question_id"] for a in impact.get("answers", [])]
    questions = await db[Collections.QUESTIONS].find(
        {"id": {"$in": question_ids}}, NO_ID
    ).to_list(length=None)
    by_id: Dict[str, dict] = {q["id"]: q for q in questions}

    answers = []
    for answer in impact.get("answers", []):
        question = by_id.get(answer["question_id"], {})
        answers.append({
            **answer,
            "question_text": question.get("question_text"),
            "response_type": question.get("response_type"),
        })
    return {**impact, "answers": answers}


async def impact_by_id(db, collection: str, impact_id: Optional[str]) -> Optional[dict]:
    if not impact_id:
        return None
    impact = await db[collection].find_one({"id": impact_id}, NO_ID)
    return await build_impact_out(db, impact)


async def build_team_out(db: AsyncIOMotorDatabase, team: Optional[dict]) -> Optional[dict]:
    if not team:
        return None
    members = []
    for member in team.get("members", []):
        members.append({"user_id": member["user_id"], "user": await user_ref(db, member["user_id"])})
    return {**team, "members": members, "created_by": await user_ref(db, team.get("created_by"))}


async def build_deviation_out(db: AsyncIOMotorDatabase, deviation: dict) -> dict:
    out = dict(deviation)
    out["department"] = await department_ref(db, deviation.get("department_id"))
    out["location"] = await location_ref(db, deviation.get("location_id"))
    out["equipment"] = await equipment_ref(db, deviation.get("equipment_id"))
    out["category"] = await category_ref(
        db, Collections.DEVIATION_CATEGORIES, (deviation.get("deviation_type") or {}).get("category_id")
    )
    out["created_by"] = await user_ref(db, deviation.get("created_by"))

    description = dict(deviation.get("detailed_description") or {})
    description["attachments"] = await attachment_refs(db, description.get("attachments", []))
    out["detailed_description"] = description

    related = dict(deviation.get("related_records") or {})
    related["attachments"] = await attachment_refs(db, related.get("attachments", []))
    out["related_records"] = related

    out["impact_assessment"] = await impact_by_id(
        db, Collections.DEVIATION_IMPACTS, deviation.get("impact_assessment")
    )
    out["team_impact_assessment"] = await impact_by_id(
        db, Collections.DEVIATION_IMPACTS, deviation.get("team_impact_assessment")
    )
    out["root_cause_analysis"] = await impact_by_id(
        db, Collections.DEVIATION_IMPACTS, deviation.get("root_cause_analysis")
    )
    return out


async def build_capa_out(db: AsyncIOMotorDatabase, capa: dict) -> dict:
    out = dict(capa)
    out["department"] = await department_ref(db, capa.get("department_id"))
    out["deviation"] = await _one(
        db, Collections.DEVIATIONS, capa.get("deviation_id"), ["deviation_number", "summary", "status"]
    )
    out["created_by"] = await user_ref(db, capa.get("created_by"))

    supporting = dict(capa.get("supporting_documents") or {})
    supporting["attachments"] = await attachment_refs(db, supporting.get("attachments", []))
    out["supporting_documents"] = supporting

    out["root_cause_analysis"] = await impact_by_id(
        db, Collections.CAPA_IMPACTS, capa.get("root_cause_analysis")
    )
    out["change_control"] = await _one(
        db, Collections.CHANGE_CONTROLS, capa.get("change_control_id"),
        ["change_control_number", "short_title", "status"],
    )
    return out


async def build_change_control_out(db: AsyncIOMotorDatabase, change_control: dict) -> dict:
    out = dict(change_control)
    out["department"] = await department_ref(db, change_control.get("department_id"))
    out["location"] = await location_ref(db, change_control.get("location_id"))
    out["category"] = await category_ref(
        db, Collections.CHANGE_CATEGORIES, (change_control.get("change_type") or {}).get("category_id")
    )
    out["capa"] = await _one(
        db, Collections.CAPAS, change_control.get("capa_id"), ["capa_number", "status"]
    )
    out["created_by"] = await user_ref(db, change_control.get("created_by"))

    description = dict(change_control.get("detailed_description") or {})
    description["attachments"] = await attachment_refs(db, description.get("attachments", []))
    out["detailed_description"] = description

    out["team_impact_assessment"] = await impact_by_id(
        db, Collections.CHANGE_IMPACTS, change_control.get("team_impact_assessment")
    )
    return out
