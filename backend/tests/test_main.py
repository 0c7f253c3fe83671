"""
Startup seeding and the error envelope.
"""
from eqms.core.config import settings
from eqms.core.security import verify_password
from eqms.db.mongo import Collections
from eqms.main import seed_defaults

from conftest import API


async def test_seed_defaults_is_idempotent(db):
    await seed_defaults(db)
    await seed_defaults(db)

    assert await db[Collections.ROLES].count_documents({}) == 4
    assert await db[Collections.DEPARTMENTS].count_documents({"name": settings.QA_DEPARTMENT_NAME}) == 1
    assert await db[Collections.USERS].count_documents({}) == 0


async def test_seed_defaults_creates_configured_admin(db, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "Admin@Example.com")
    monkeypatch.setattr(settings, "ADMIN_PASSWORD", "Adm1nPassword")

    await seed_defaults(db)
    await seed_defaults(db)

    admins = await db[Collections.USERS].find({}).to_list(length=None)
    assert len(admins) == 1
    admin = admins[0]
    assert admin["email"] == "admin@example.com"
    assert admin["is_active"] is True
    assert verify_password("Adm1nPassword", admin["password"])
    role = await db[Collections.ROLES].find_one({"id": admin["role_id"]})
    assert role["name"] == "System Admin"


async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["docs"] == "/api/docs"


async def test_unknown_route_uses_error_envelope(client):
    response = await client.get(f"{API}/nothing-here")
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Not Found"}


async def test_body_validation_errors_are_400(client):
    response = await client.post(f"{API}/auth/login", json={"email": "not-an-email"})
    assert response.status_code == 400
    fields = {e["field"] for e in response.json()["errors"]}
    assert "body.email" in fields
    assert "body.password" in fields
