"""
Shared pytest fixtures for the eQMS test suite.

Provides:
    - db: in-memory Motor database (mongomock-motor), fresh per test
    - client: httpx client bound to the FastAPI app with get_db overridden
    - seeded: default roles and the QA department, as created at startup
    - make_department / make_user / auth_headers: factories
    - master_data: a location, categories and two impact questions
"""
import os
import tempfile

# Uploads go to a throwaway directory; must be set before eqms is imported
_UPLOAD_ROOT = tempfile.mkdtemp(prefix="eqms-test-")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_UPLOAD_ROOT, "uploads"))
os.environ.setdefault("TEMP_UPLOAD_DIR", os.path.join(_UPLOAD_ROOT, "tmp"))

from datetime import datetime, timezone
from functools import lru_cache
import json
import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from eqms.core.config import settings
from eqms.core.security import create_access_token, hash_password
from eqms.db.mongo import Collections, get_db
from eqms.main import app, seed_defaults
from eqms.models.rbac import DepartmentCreate
from eqms.models.workflow import RoleName
from eqms.services.rbac_service import RBACService

API = settings.API_PREFIX
PASSWORD = "Passw0rd1"


@lru_cache(maxsize=1)
def password_hash() -> str:
    return hash_password(PASSWORD)


# ── DB & client ──────────────────────────────────────────────────────────


@pytest.fixture
def db():
    client = AsyncMongoMockClient()
    return client[f"eqms_test_{uuid.uuid4().hex[:8]}"]


@pytest.fixture
async def client(db, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "TEMP_UPLOAD_DIR", str(tmp_path / "tmp"))
    app.dependency_overrides[get_db] = lambda: db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def seeded(db):
    """Role name -> role id, plus the QA department under "QA" """
    await seed_defaults(db)
    roles = await db[Collections.ROLES].find({}).to_list(length=None)
    qa = await db[Collections.DEPARTMENTS].find_one({"name": settings.QA_DEPARTMENT_NAME})
    return {"roles": {r["name"]: r["id"] for r in roles}, "qa": qa}


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture
def make_department(db):
    async def _make(name: str) -> dict:
        return await RBACService(db).create_department(DepartmentCreate(name=name))
    return _make


@pytest.fixture
def make_user(db, seeded):
    async def _make(role: RoleName, department: dict, active: bool = True, email: str = None) -> dict:
        now = datetime.now(timezone.utc)
        user = {
            "id": str(uuid.uuid4()),
            "email": email or f"{uuid.uuid4().hex[:10]}@example.com",
            "password": password_hash(),
            "name": f"{RoleName(role).value} user",
            "role_id": seeded["roles"][RoleName(role).value],
            "department_id": department["id"],
            "is_active": active,
            "created_at": now,
            "updated_at": now,
        }
        await db[Collections.USERS].insert_one(user)
        user.pop("_id", None)
        return user
    return _make


def auth_headers(user: dict) -> dict:
    token, _ = create_access_token(user["id"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def department(make_department, seeded):
    """"Quality Assurance" -> code QUA; not the QA department itself"""
    return await make_department("Quality Assurance")


@pytest.fixture
async def master_data(db, department):
    now = datetime.now(timezone.utc)
    location = {
        "id": str(uuid.uuid4()), "name": "Cold room", "department_id": department["id"],
        "location_code": "QUA-LOC001", "created_at": now,
    }
    deviation_category = {"id": str(uuid.uuid4()), "name": "Storage", "created_at": now}
    change_category = {"id": str(uuid.uuid4()), "name": "Process", "created_at": now}
    yes_no = {
        "id": str(uuid.uuid4()), "question_text": "Is product quality affected?",
        "response_type": "yes_no", "created_at": now,
    }
    rating = {
        "id": str(uuid.uuid4()), "question_text": "Rate the patient risk",
        "response_type": "rating", "created_at": now,
    }
    await db[Collections.LOCATIONS].insert_one(dict(location))
    await db[Collections.DEVIATION_CATEGORIES].insert_one(dict(deviation_category))
    await db[Collections.CHANGE_CATEGORIES].insert_one(dict(change_category))
    await db[Collections.QUESTIONS].insert_one(dict(yes_no))
    await db[Collections.QUESTIONS].insert_one(dict(rating))
    return {
        "location": location,
        "deviation_category": deviation_category,
        "change_category": change_category,
        "yes_no": yes_no,
        "rating": rating,
    }


# ── Payloads ─────────────────────────────────────────────────────────────


def deviation_payload(department: dict, master_data: dict, **overrides) -> dict:
    payload = {
        "reported_at": "2025-03-01T09:30:00Z",
        "deviation_type": {
            "type1": "Unplanned",
            "type2": "GMP",
            "category_id": master_data["deviation_category"]["id"],
        },
        "department_id": department["id"],
        "location_id": master_data["location"]["id"],
        "item": {"type": "product", "product_name": "Paracetamol 500mg", "batch_number": "B2301"},
        "summary": "Temperature excursion in cold room",
        "detailed_description": {"answer1": "Cold room reached 12C", "answer2": "Data logger alarm"},
        "risk_assessment": 4,
        "severity_level": "Major",
    }
    payload.update(overrides)
    return payload


def change_control_payload(department: dict, master_data: dict, **overrides) -> dict:
    payload = {
        "initiated_at": "2025-03-10T08:00:00Z",
        "short_title": "Replace cold room compressor",
        "justification": "Recurring excursions",
        "change_type": {
            "type1": "Major",
            "type2": "Permanent",
            "category_id": master_data["change_category"]["id"],
        },
        "department_id": department["id"],
        "item": {"type": "material", "material_name": "Compressor unit"},
        "detailed_description": {"answer1": "New compressor", "answer2": "Old one fails under load"},
        "risk_assessment": 5,
        "implementation_timeline": {
            "start_date": "2025-04-01T00:00:00Z",
            "end_date": "2025-04-15T00:00:00Z",
        },
    }
    payload.update(overrides)
    return payload


def form(payload: dict) -> dict:
    """Multipart/form body carrying a JSON `data` field"""
    return {"data": json.dumps(payload)}


async def create_deviation(client: AsyncClient, creator: dict, department: dict, master_data: dict, **overrides) -> dict:
    response = await client.post(
        f"{API}/deviations",
        data=form(deviation_payload(department, master_data, **overrides)),
        headers=auth_headers(creator),
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]
