"""
MongoDB Connection Management
"""
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Optional
import logging

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorClientSession,
    AsyncIOMotorDatabase,
)
from pydantic import BaseModel
from pymongo import ASCENDING

from eqms.core.config import settings
from eqms.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)

# Global MongoDB client and database
_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None

# Read projection that keeps ObjectIds out of API responses
NO_ID = {"_id": 0}


async def get_database() -> AsyncIOMotorDatabase:
    """
    Return the MongoDB database instance
    A single client is shared by the whole process
    """
    global _client, _database

    if _database is None:
        logger.info(f"Connecting to MongoDB: {settings.MONGO_URL}")

        try:
            _client = AsyncIOMotorClient(
                settings.MONGO_URL,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000,
            )

            await _client.admin.command("ping")

            _database = _client[settings.DB_NAME]
            logger.info(f"MongoDB connected: {settings.DB_NAME}")

        except Exception as e:
            logger.error(f"MongoDB connection error: {e}")
            _client = None
            raise

    return _database


async def close_database_connection():
    """
    Close the MongoDB connection
    """
    global _client, _database

    if _client is not None:
        logger.info("Closing MongoDB connection...")
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")


async def ping_database() -> bool:
    """
    Check the database connection
    """
    try:
        db = await get_database()
        await db.command("ping")
        return True
    except Exception as e:
        logger.error(f"Database ping error: {e}")
        return False


# Collection names (constants)
class Collections:
    """MongoDB collection names"""

    # Users and authorization
    USERS = "users"
    ROLES = "roles"
    PERMISSIONS = "permissions"
    ROLE_PERMISSIONS = "role_permissions"
    DEPARTMENTS = "departments"

    # Master data
    LOCATIONS = "locations"
    EQUIPMENTS = "equipments"
    DEVIATION_CATEGORIES = "deviation_categories"
    CHANGE_CATEGORIES = "change_categories"
    QUESTIONS = "questions"

    # Deviation
    DEVIATIONS = "deviations"
    DEVIATION_IMPACTS = "deviation_impacts"
    DEVIATION_TEAMS = "investigation_teams"
    ATTACHMENTS = "attachments"

    # CAPA
    CAPAS = "capas"
    CAPA_IMPACTS = "capa_impacts"
    CAPA_TEAMS = "capa_investigation_teams"

    # Change control
    CHANGE_CONTROLS = "change_controls"
    CHANGE_IMPACTS = "change_impacts"
    CHANGE_CONTROL_TEAMS = "change_control_investigation_teams"

    # Controlled documents
    MANUALS = "manuals"
    MANUAL_VERSIONS = "manual_versions"
    MANUAL_REVIEWS = "manual_reviews"
    POLICIES = "policies"
    POLICY_VERSIONS = "policy_versions"
    POLICY_REVIEWS = "policy_reviews"
    PROCEDURES = "procedures"
    PROCEDURE_VERSIONS = "procedure_versions"
    PROCEDURE_REVIEWS = "procedure_reviews"
    WORK_INSTRUCTIONS = "work_instructions"
    WORK_INSTRUCTION_VERSIONS = "work_instruction_versions"
    WORK_INSTRUCTION_REVIEWS = "work_instruction_reviews"


# Unique indexes besides "id"; reference numbers rely on these as a collision backstop
UNIQUE_INDEXES = {
    Collections.USERS: ["email"],
    Collections.ROLES: ["name"],
    Collections.PERMISSIONS: ["name"],
    Collections.DEPARTMENTS: ["name", "code"],
    Collections.LOCATIONS: ["location_code"],
    Collections.EQUIPMENTS: ["code"],
    Collections.DEVIATION_CATEGORIES: ["name"],
    Collections.CHANGE_CATEGORIES: ["name"],
    Collections.QUESTIONS: ["question_text"],
    Collections.DEVIATIONS: ["deviation_number"],
    Collections.CAPAS: ["capa_number"],
    Collections.CHANGE_CONTROLS: ["change_control_number"],
    Collections.MANUALS: ["reference_number"],
    Collections.POLICIES: ["reference_number"],
    Collections.PROCEDURES: ["reference_number"],
    Collections.WORK_INSTRUCTIONS: ["reference_number"],
}


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the unique indexes every collection relies on"""
    names = [
        value for key, value in vars(Collections).items()
        if key.isupper() and isinstance(value, str)
    ]
    for name in names:
        await db[name].create_index([("id", ASCENDING)], unique=True)
        for field in UNIQUE_INDEXES.get(name, []):
            await db[name].create_index([(field, ASCENDING)], unique=True, sparse=True)

    await db[Collections.ROLE_PERMISSIONS].create_index(
        [("role_id", ASCENDING), ("permission_id", ASCENDING)], unique=True
    )
    logger.info(f"Indexes ensured on {len(names)} collections")


@asynccontextmanager
async def transaction(db: AsyncIOMotorDatabase) -> AsyncIterator[Optional[AsyncIOMotorClientSession]]:
    """
    Multi-document transaction scope
    Yields a session inside a started transaction, or None when transactions
    are disabled. Commits on success, aborts when the block raises.
    """
    if not settings.MONGO_TRANSACTIONS:
        yield None
        return

    async with await db.client.start_session() as session:
        async with session.start_transaction():
            yield session


def strip_id(doc: Optional[dict]) -> Optional[dict]:
    """Drop the ObjectId motor adds to a dict on insert"""
    if doc is not None:
        doc.pop("_id", None)
    return doc


# Dependency injection
async def get_db() -> AsyncIOMotorDatabase:
    """
    Database getter used as a FastAPI dependency
    """
    return await get_database()


async def get_or_404(db: AsyncIOMotorDatabase, collection: str, record_id: Optional[str], label: str) -> dict:
    """Fetch a record by id or raise NotFoundError"""
    record = await db[collection].find_one({"id": record_id}, NO_ID) if record_id else None
    if not record:
        raise NotFoundError(label, record_id)
    return record


def to_mongo(value: Any) -> Any:
    """Pydantic model (or nested data) -> BSON-friendly data; enums become values"""
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_mongo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_mongo(v) for v in value]
    return value
