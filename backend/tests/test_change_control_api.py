"""
Change control over HTTP: numbering, summary search and the acknowledge step.
"""
import pytest

from eqms.db.mongo import Collections
from eqms.models.workflow import RoleName

from conftest import API, auth_headers, change_control_payload, form


@pytest.fixture
async def people(make_user, department, seeded):
    return {
        "creator": await make_user(RoleName.CREATOR, department),
        "reviewer": await make_user(RoleName.REVIEWER, department),
        "approver": await make_user(RoleName.APPROVER, seeded["qa"]),
        "member": await make_user(RoleName.REVIEWER, department),
    }


async def create_change(client, creator, department, master_data, **overrides) -> dict:
    response = await client.post(
        f"{API}/change-control",
        data=form(change_control_payload(department, master_data, **overrides)),
        headers=auth_headers(creator),
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def test_change_control_numbering(client, people, department, master_data):
    first = await create_change(client, people["creator"], department, master_data)
    second = await create_change(client, people["creator"], department, master_data)

    assert first["change_control_number"] == "QUA-CC001"
    assert second["change_control_number"] == "QUA-CC002"
    assert first["status"] == "Draft"
    assert first["category"]["name"] == "Process"
    assert first["capa"] is None


async def test_timeline_must_be_ordered(client, db, people, department, master_data):
    payload = change_control_payload(
        department, master_data,
        implementation_timeline={"start_date": "2025-04-15T00:00:00Z", "end_date": "2025-04-01T00:00:00Z"},
    )
    response = await client.post(f"{API}/change-control", data=form(payload), headers=auth_headers(people["creator"]))
    assert response.status_code == 400
    assert await db[Collections.CHANGE_CONTROLS].count_documents({}) == 0


async def test_equipment_item_must_exist(client, people, department, master_data):
    payload = change_control_payload(
        department, master_data, item={"type": "equipment", "equipment_id": "missing"}
    )
    response = await client.post(f"{API}/change-control", data=form(payload), headers=auth_headers(people["creator"]))
    assert response.status_code == 404


async def test_similar_changes_must_exist(client, people, department, master_data):
    payload = change_control_payload(department, master_data, similar_changes=["missing"])
    response = await client.post(f"{API}/change-control", data=form(payload), headers=auth_headers(people["creator"]))
    assert response.status_code == 400


async def test_summary_search_and_department_scope(client, make_user, make_department, people, department, master_data):
    await create_change(client, people["creator"], department, master_data, short_title="Replace compressor")
    await create_change(client, people["creator"], department, master_data, short_title="New label printer")

    other = await make_department("Warehouse")
    other_creator = await make_user(RoleName.CREATOR, other)

    response = await client.get(
        f"{API}/change-control/summary", params={"search": "COMPRESSOR"}, headers=auth_headers(people["creator"])
    )
    titles = [c["short_title"] for c in response.json()["data"]]
    assert titles == ["Replace compressor"]
    assert set(response.json()["data"][0]) == {"id", "change_control_number", "short_title", "initiated_at", "status"}

    response = await client.get(f"{API}/change-control/summary", headers=auth_headers(other_creator))
    assert response.json()["data"] == []

    response = await client.get(f"{API}/change-control/summary", headers=auth_headers(people["approver"]))
    assert len(response.json()["data"]) == 2


async def test_full_change_control_lifecycle(client, people, department, master_data):
    change = await create_change(client, people["creator"], department, master_data)
    cc_id = change["id"]
    member, approver = people["member"], people["approver"]

    await client.put(f"{API}/change-control/{cc_id}/submit", headers=auth_headers(people["creator"]))
    await client.put(
        f"{API}/change-control/{cc_id}/review", json={"action": "Approved"}, headers=auth_headers(people["reviewer"])
    )
    response = await client.put(
        f"{API}/change-control/{cc_id}/qa-review", json={"action": "Approved"}, headers=auth_headers(approver)
    )
    assert response.json()["data"]["status"] == "Accepted By QA"

    response = await client.post(
        f"{API}/change-control/investigation-teams",
        json={"parent_id": cc_id, "members": [{"user_id": member["id"]}]},
        headers=auth_headers(approver),
    )
    assert response.status_code == 201, response.text

    response = await client.post(
        f"{API}/change-control/investigation-teams/impact-assessment",
        json={"parent_id": cc_id, "answers": [{"question_id": master_data["rating"]["id"], "answer": 3}]},
        headers=auth_headers(member),
    )
    assert response.status_code == 201, response.text
    assert response.json()["data"]["parent"]["status"] == "Team Impact Assessment Done"

    response = await client.post(
        f"{API}/change-control/investigation-teams/historical-check",
        json={"change_control_id": cc_id, "similar_changes": [cc_id]},
        headers=auth_headers(member),
    )
    assert response.status_code == 400

    response = await client.post(
        f"{API}/change-control/investigation-teams/historical-check",
        json={"change_control_id": cc_id},
        headers=auth_headers(member),
    )
    assert response.json()["data"]["status"] == "Historical Check Done"

    response = await client.put(f"{API}/change-control/{cc_id}/close", headers=auth_headers(approver))
    assert response.status_code == 400

    response = await client.put(f"{API}/change-control/{cc_id}/acknowledge", headers=auth_headers(approver))
    assert response.json()["data"]["status"] == "Acknowledged By Approver"
    assert response.json()["data"]["acknowledged_by"] == approver["id"]

    response = await client.put(f"{API}/change-control/{cc_id}/close", headers=auth_headers(approver))
    assert response.json()["data"]["status"] == "Closed"
