"""
Master Data API
Locations, equipment, deviation/change categories and impact questions
"""
from fastapi import APIRouter, Depends, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime, timezone
import re
import uuid
from typing import Optional

from eqms.api.v1.deps import get_current_user
from eqms.core.exceptions import ConflictError, NotFoundError
from eqms.core.responses import envelope
from eqms.db.mongo import Collections, NO_ID, get_db, get_or_404, strip_id, to_mongo
from eqms.models.master_data import (
    CategoryCreate,
    EquipmentCreate, EquipmentUpdate,
    LocationCreate, LocationUpdate,
    QuestionCreate, QuestionUpdate,
)
from eqms.services.numbering import NumberingService
from eqms.services.projections import department_ref


router = APIRouter(tags=["Master Data"])


async def ensure_unique(db: AsyncIOMotorDatabase, collection: str, label: str, field: str, value: str, exclude_id: Optional[str] = None):
    """Case-insensitive uniqueness check on one field"""
    query = {field: {"$regex": f"^{re.escape(value)}$", "$options": "i"}}
    if exclude_id:
        query["id"] = {"$ne": exclude_id}
    if await db[collection].find_one(query):
        raise ConflictError(label, field, value)


async def insert_record(db: AsyncIOMotorDatabase, collection: str, fields: dict, user: dict) -> dict:
    now = datetime.now(timezone.utc)
    doc = {"id": str(uuid.uuid4()), **fields, "created_by": user["id"], "created_at": now, "updated_at": now}
    await db[collection].insert_one(doc)
    return strip_id(doc)


async def update_record(db: AsyncIOMotorDatabase, collection: str, label: str, record_id: str, updates: dict) -> dict:
    await get_or_404(db, collection, record_id, label)
    updates["updated_at"] = datetime.now(timezone.utc)
    await db[collection].update_one({"id": record_id}, {"$set": updates})
    return await get_or_404(db, collection, record_id, label)


async def delete_record(db: AsyncIOMotorDatabase, collection: str, label: str, record_id: str) -> None:
    result = await db[collection].delete_one({"id": record_id})
    if result.deleted_count == 0:
        raise NotFoundError(label, record_id)


async def list_records(db: AsyncIOMotorDatabase, collection: str, with_department: bool = False) -> list:
    docs = await db[collection].find({}, NO_ID).sort("created_at", -1).to_list(length=None)
    if with_department:
        for doc in docs:
            doc["department"] = await department_ref(db, doc.get("department_id"))
    return docs


# ============================================================================
# LOCATIONS
# ============================================================================

@router.post("/locations", status_code=status.HTTP_201_CREATED)
async def create_location(
    data: LocationCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """
    Create a location; its code is {DEPT}-LOC{NNN}
    """
    await get_or_404(db, Collections.DEPARTMENTS, data.department_id, "Department")
    location_code = await NumberingService(db).location_code(data.department_id)
    location = await insert_record(
        db, Collections.LOCATIONS,
        {"name": data.name, "department_id": data.department_id, "location_code": location_code},
        current_user,
    )
    return envelope(location, "Location created successfully")


@router.get("/locations")
async def list_locations(
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    return envelope(await list_records(db, Collections.LOCATIONS, with_department=True))


@router.get("/locations/{location_id}")
async def get_location(
    location_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    location = await get_or_404(db, Collections.LOCATIONS, location_id, "Location")
    location["department"] = await department_ref(db, location.get("department_id"))
    return envelope(location)


@router.put("/locations/{location_id}")
async def update_location(
    location_id: str,
    data: LocationUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    location = await update_record(
        db, Collections.LOCATIONS, "Location", location_id, data.model_dump(exclude_none=True)
    )
    return envelope(location, "Location updated successfully")


@router.delete("/locations/{location_id}")
async def delete_location(
    location_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    await delete_record(db, Collections.LOCATIONS, "Location", location_id)
    return envelope(message="Location deleted successfully")


# ============================================================================
# EQUIPMENTS
# ============================================================================

@router.post("/equipments", status_code=status.HTTP_201_CREATED)
async def create_equipment(
    data: EquipmentCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """
    Create equipment; codes are stored upper-cased and must be unique
    """
    await get_or_404(db, Collections.DEPARTMENTS, data.department_id, "Department")
    code = data.code.strip().upper()
    await ensure_unique(db, Collections.EQUIPMENTS, "Equipment", "code", code)
    equipment = await insert_record(
        db, Collections.EQUIPMENTS,
        {"name": data.name, "code": code, "department_id": data.department_id},
        current_user,
    )
    return envelope(equipment, "Equipment created successfully")


@router.get("/equipments")
async def list_equipments(
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    return envelope(await list_records(db, Collections.EQUIPMENTS, with_department=True))


@router.get("/equipments/{equipment_id}")
async def get_equipment(
    equipment_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    equipment = await get_or_404(db, Collections.EQUIPMENTS, equipment_id, "Equipment")
    equipment["department"] = await department_ref(db, equipment.get("department_id"))
    return envelope(equipment)


@router.put("/equipments/{equipment_id}")
async def update_equipment(
    equipment_id: str,
    data: EquipmentUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    updates = data.model_dump(exclude_none=True)
    if "code" in updates:
        updates["code"] = updates["code"].strip().upper()
        await ensure_unique(db, Collections.EQUIPMENTS, "Equipment", "code", updates["code"], equipment_id)
    if "department_id" in updates:
        await get_or_404(db, Collections.DEPARTMENTS, updates["department_id"], "Department")
    equipment = await update_record(db, Collections.EQUIPMENTS, "Equipment", equipment_id, updates)
    return envelope(equipment, "Equipment updated successfully")


@router.delete("/equipments/{equipment_id}")
async def delete_equipment(
    equipment_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    await delete_record(db, Collections.EQUIPMENTS, "Equipment", equipment_id)
    return envelope(message="Equipment deleted successfully")


# ============================================================================
# CATEGORIES (deviation and change control share one shape)
# ============================================================================

def add_category_routes(path: str, collection: str, label: str) -> None:
    @router.post(path, status_code=status.HTTP_201_CREATED, name=f"create_{collection}")
    async def create_category(
        data: CategoryCreate,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(get_current_user)
    ):
        name = data.name.strip()
        await ensure_unique(db, collection, label, "name", name)
        category = await insert_record(db, collection, {"name": name}, current_user)
        return envelope(category, f"{label} created successfully")

    @router.get(path, name=f"list_{collection}")
    async def list_categories(
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(get_current_user)
    ):
        return envelope(await list_records(db, collection))

    @router.get(f"{path}/{{category_id}}", name=f"get_{collection}")
    async def get_category(
        category_id: str,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(get_current_user)
    ):
        return envelope(await get_or_404(db, collection, category_id, label))

    @router.put(f"{path}/{{category_id}}", name=f"update_{collection}")
    async def update_category(
        category_id: str,
        data: CategoryCreate,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(get_current_user)
    ):
        name = data.name.strip()
        await ensure_unique(db, collection, label, "name", name, category_id)
        category = await update_record(db, collection, label, category_id, {"name": name})
        return envelope(category, f"{label} updated successfully")

    @router.delete(f"{path}/{{category_id}}", name=f"delete_{collection}")
    async def delete_category(
        category_id: str,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(get_current_user)
    ):
        await delete_record(db, collection, label, category_id)
        return envelope(message=f"{label} deleted successfully")


add_category_routes("/deviation-categories", Collections.DEVIATION_CATEGORIES, "Deviation category")
add_category_routes("/change-categories", Collections.CHANGE_CATEGORIES, "Change category")


# ============================================================================
# QUESTIONS
# ============================================================================

@router.post("/questions", status_code=status.HTTP_201_CREATED)
async def create_question(
    data: QuestionCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    text = data.question_text.strip()
    await ensure_unique(db, Collections.QUESTIONS, "Question", "question_text", text)
    question = await insert_record(
        db, Collections.QUESTIONS,
        {"question_text": text, "response_type": data.response_type.value},
        current_user,
    )
    return envelope(question, "Question created successfully")


@router.get("/questions")
async def list_questions(
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    return envelope(await list_records(db, Collections.QUESTIONS))


@router.get("/questions/{question_id}")
async def get_question(
    question_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    return envelope(await get_or_404(db, Collections.QUESTIONS, question_id, "Question"))


@router.put("/questions/{question_id}")
async def update_question(
    question_id: str,
    data: QuestionUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    updates = to_mongo(data.model_dump(exclude_none=True))
    if "question_text" in updates:
        updates["question_text"] = updates["question_text"].strip()
        await ensure_unique(
            db, Collections.QUESTIONS, "Question", "question_text", updates["question_text"], question_id
        )
    question = await update_record(db, Collections.QUESTIONS, "Question", question_id, updates)
    return envelope(question, "Question updated successfully")


@router.delete("/questions/{question_id}")
async def delete_question(
    question_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    await delete_record(db, Collections.QUESTIONS, "Question", question_id)
    return envelope(message="Question deleted successfully")
