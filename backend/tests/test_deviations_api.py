"""
Deviation lifecycle over HTTP: creation, review, team investigation, close.
"""
import pytest

from eqms.db.mongo import Collections
from eqms.models.workflow import RoleName

from conftest import API, auth_headers, create_deviation, deviation_payload, form


@pytest.fixture
async def people(make_user, department, seeded):
    return {
        "creator": await make_user(RoleName.CREATOR, department),
        "reviewer": await make_user(RoleName.REVIEWER, department),
        "approver": await make_user(RoleName.APPROVER, seeded["qa"]),
        "member": await make_user(RoleName.REVIEWER, department),
    }


async def put(client, path, user, body=None):
    return await client.put(f"{API}{path}", json=body, headers=auth_headers(user))


async def accepted_deviation(client, people, department, master_data) -> dict:
    deviation = await create_deviation(client, people["creator"], department, master_data)
    dev_id = deviation["id"]
    assert (await put(client, f"/deviations/{dev_id}/submit", people["creator"])).status_code == 200
    response = await put(client, f"/deviations/{dev_id}/review", people["reviewer"], {"action": "Approved"})
    assert response.status_code == 200
    response = await put(client, f"/deviations/{dev_id}/qa-review", people["approver"], {"action": "Approved"})
    assert response.json()["data"]["status"] == "Accepted By QA"
    return response.json()["data"]


async def test_create_deviation_numbers_per_department(client, people, department, master_data):
    first = await create_deviation(client, people["creator"], department, master_data)
    second = await create_deviation(client, people["creator"], department, master_data)

    assert first["deviation_number"] == "QUA-DEV001"
    assert second["deviation_number"] == "QUA-DEV002"
    assert first["status"] == "Draft"
    assert first["department"]["code"] == "QUA"
    assert first["location"]["name"] == "Cold room"
    assert first["created_by"]["id"] == people["creator"]["id"]
    assert [h["to_status"] for h in first["status_history"]] == ["Draft"]


async def test_create_deviation_with_files_and_initial_impact(client, people, department, master_data):
    payload = deviation_payload(
        department, master_data,
        impact_assessments=[{"question_id": master_data["yes_no"]["id"], "answer": True}],
    )
    response = await client.post(
        f"{API}/deviations",
        data=form(payload),
        files=[
            ("detailedDescriptionAttachments", ("logger.pdf", b"%PDF-1.4", "application/pdf")),
            ("relatedRecordsAttachments", ("batch.txt", b"batch record", "text/plain")),
        ],
        headers=auth_headers(people["creator"]),
    )
    assert response.status_code == 201, response.text
    deviation = response.json()["data"]

    assert len(deviation["detailed_description"]["attachments"]) == 1
    assert len(deviation["related_records"]["attachments"]) == 1
    assert deviation["related_records"]["attachments"][0]["url"].endswith(".txt")
    assert deviation["impact_assessment"]["answers"][0]["answer"] is True
    assert deviation["impact_assessment"]["answers"][0]["question_text"] == "Is product quality affected?"


async def test_create_deviation_rejects_bad_answer_without_side_effects(client, db, people, department, master_data):
    payload = deviation_payload(
        department, master_data,
        impact_assessments=[{"question_id": master_data["rating"]["id"], "answer": 7}],
    )
    response = await client.post(f"{API}/deviations", data=form(payload), headers=auth_headers(people["creator"]))

    assert response.status_code == 400
    assert await db[Collections.DEVIATIONS].count_documents({}) == 0
    assert await db[Collections.DEVIATION_IMPACTS].count_documents({}) == 0


async def test_create_deviation_rejects_disallowed_file(client, db, people, department, master_data):
    response = await client.post(
        f"{API}/deviations",
        data=form(deviation_payload(department, master_data)),
        files=[("relatedRecordsAttachments", ("run.exe", b"MZ", "application/octet-stream"))],
        headers=auth_headers(people["creator"]),
    )
    assert response.status_code == 400
    assert await db[Collections.DEVIATIONS].count_documents({}) == 0


async def test_create_deviation_invalid_data(client, people, department, master_data):
    headers = auth_headers(people["creator"])

    response = await client.post(f"{API}/deviations", data={"data": "{not json"}, headers=headers)
    assert response.status_code == 400

    payload = deviation_payload(department, master_data, risk_assessment=11)
    response = await client.post(f"{API}/deviations", data=form(payload), headers=headers)
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "risk_assessment"

    payload = deviation_payload(department, master_data, location_id="missing")
    response = await client.post(f"{API}/deviations", data=form(payload), headers=headers)
    assert response.status_code == 404


async def test_only_creators_create_deviations(client, people, department, master_data):
    response = await client.post(
        f"{API}/deviations",
        data=form(deviation_payload(department, master_data)),
        headers=auth_headers(people["reviewer"]),
    )
    assert response.status_code == 403


async def test_requests_without_token_are_refused(client):
    response = await client.get(f"{API}/deviations")
    assert response.status_code in (401, 403)
    assert response.json()["success"] is False


async def test_rejection_returns_to_draft(client, people, department, master_data):
    deviation = await create_deviation(client, people["creator"], department, master_data)
    dev_id = deviation["id"]

    response = await put(client, f"/deviations/{dev_id}/submit", people["creator"])
    assert response.json()["data"]["status"] == "Under Department Head Review"

    response = await put(
        client, f"/deviations/{dev_id}/review", people["reviewer"],
        {"action": "Rejected", "comments": "Add logger printout"},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "Draft"
    assert data["review_comments"] == "Add logger printout"

    response = await put(client, f"/deviations/{dev_id}/submit", people["creator"])
    assert response.json()["data"]["status"] == "Under Department Head Review"
    assert [h["action"] for h in response.json()["data"]["status_history"]] == [
        "create", "submit", "reject_department", "submit",
    ]


async def test_review_from_wrong_status_is_rejected(client, people, department, master_data):
    deviation = await create_deviation(client, people["creator"], department, master_data)

    response = await put(client, f"/deviations/{deviation['id']}/review", people["reviewer"], {"action": "Approved"})
    assert response.status_code == 400

    response = await client.get(f"{API}/deviations/{deviation['id']}", headers=auth_headers(people["creator"]))
    assert response.json()["data"]["status"] == "Draft"


async def test_reviewer_from_other_department_is_refused(client, make_user, make_department, people, department, master_data):
    other = await make_department("Warehouse")
    outsider = await make_user(RoleName.REVIEWER, other)
    deviation = await create_deviation(client, people["creator"], department, master_data)
    await put(client, f"/deviations/{deviation['id']}/submit", people["creator"])

    response = await put(client, f"/deviations/{deviation['id']}/review", outsider, {"action": "Approved"})
    assert response.status_code == 403


async def test_creator_sees_only_own_department(client, make_user, make_department, people, department, master_data):
    other = await make_department("Warehouse")
    other_creator = await make_user(RoleName.CREATOR, other)
    deviation = await create_deviation(client, people["creator"], department, master_data)

    response = await client.get(f"{API}/deviations", headers=auth_headers(other_creator))
    assert response.json()["data"] == []

    response = await client.get(f"{API}/deviations/{deviation['id']}", headers=auth_headers(other_creator))
    assert response.status_code == 403

    response = await client.get(f"{API}/deviations/summary", headers=auth_headers(people["approver"]))
    assert [d["deviation_number"] for d in response.json()["data"]] == ["QUA-DEV001"]


async def test_qa_rejection_returns_to_draft(client, people, department, master_data):
    deviation = await create_deviation(client, people["creator"], department, master_data)
    dev_id = deviation["id"]
    await put(client, f"/deviations/{dev_id}/submit", people["creator"])
    await put(client, f"/deviations/{dev_id}/review", people["reviewer"], {"action": "Approved"})

    response = await put(
        client, f"/deviations/{dev_id}/qa-review", people["approver"],
        {"action": "Rejected", "comments": "Root cause unclear"},
    )
    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert data["status"] == "Draft"
    assert data["qa_comments"] == "Root cause unclear"
    assert [h["to_status"] for h in data["status_history"]] == [
        "Draft", "Under Department Head Review", "Approved By Department Head", "Draft",
    ]

    # A rejected deviation goes through both reviews again
    response = await put(client, f"/deviations/{dev_id}/submit", people["creator"])
    assert response.json()["data"]["status"] == "Under Department Head Review"


async def test_team_for_draft_deviation_is_refused(client, db, people, department, master_data):
    deviation = await create_deviation(client, people["creator"], department, master_data)

    response = await client.post(
        f"{API}/investigation-teams",
        json={"parent_id": deviation["id"], "members": [{"user_id": people["member"]["id"]}]},
        headers=auth_headers(people["approver"]),
    )

    assert response.status_code == 400
    assert await db[Collections.DEVIATION_TEAMS].count_documents({}) == 0
    stored = await db[Collections.DEVIATIONS].find_one({"id": deviation["id"]})
    assert stored["status"] == "Draft"


async def test_full_investigation_and_close(client, people, department, master_data):
    deviation = await accepted_deviation(client, people, department, master_data)
    dev_id = deviation["id"]
    member, approver = people["member"], people["approver"]
    answers = [
        {"question_id": master_data["yes_no"]["id"], "answer": False},
        {"question_id": master_data["rating"]["id"], "answer": 2},
    ]

    response = await client.post(
        f"{API}/investigation-teams",
        json={"parent_id": dev_id, "members": [{"user_id": member["id"]}], "remarks": "QC lead"},
        headers=auth_headers(approver),
    )
    assert response.status_code == 201, response.text
    team = response.json()["data"]["team"]
    assert response.json()["data"]["parent"]["status"] == "Investigation Team Assigned"
    assert team["members"][0]["user"]["id"] == member["id"]

    # Non-members cannot record on behalf of the team
    response = await client.post(
        f"{API}/investigation-teams/impact-assessment",
        json={"parent_id": dev_id, "answers": answers},
        headers=auth_headers(people["reviewer"]),
    )
    assert response.status_code == 403

    response = await client.post(
        f"{API}/investigation-teams/impact-assessment",
        json={"parent_id": dev_id, "answers": answers},
        headers=auth_headers(member),
    )
    assert response.status_code == 201, response.text
    assert response.json()["data"]["parent"]["status"] == "Team Impact Assessment Done"

    response = await client.post(
        f"{API}/investigation-teams/root-cause-analysis",
        json={"type": "deviation", "target_id": dev_id, "answers": answers},
        headers=auth_headers(member),
    )
    assert response.status_code == 201, response.text
    assert response.json()["data"]["parent"]["status"] == "Root Cause Analysis Done"

    # Closing skips the historical check
    response = await put(client, f"/deviations/{dev_id}/close", approver)
    assert response.status_code == 400

    response = await client.post(
        f"{API}/investigation-teams/historical-check",
        json={"deviation_id": dev_id, "similar_deviations": []},
        headers=auth_headers(member),
    )
    assert response.status_code == 200, response.text
    assert response.json()["data"]["status"] == "Historical Check Done"

    response = await put(client, f"/deviations/{dev_id}/close", member)
    assert response.status_code == 403

    response = await put(client, f"/deviations/{dev_id}/close", approver, {"comments": "Done"})
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "Closed"

    response = await client.get(f"{API}/deviations/{dev_id}", headers=auth_headers(approver))
    data = response.json()["data"]
    assert data["team_impact_assessment"]["kind"] == "team_impact"
    assert data["root_cause_analysis"]["kind"] == "root_cause"
    assert data["status_history"][-1]["to_status"] == "Closed"


async def test_team_lookup_and_delete_keeps_parent_status(client, db, people, department, master_data):
    deviation = await accepted_deviation(client, people, department, master_data)
    response = await client.post(
        f"{API}/investigation-teams",
        json={"parent_id": deviation["id"], "members": [{"user_id": people["member"]["id"]}]},
        headers=auth_headers(people["approver"]),
    )
    team_id = response.json()["data"]["team"]["id"]

    response = await client.get(f"{API}/investigation-teams/{deviation['id']}", headers=auth_headers(people["member"]))
    assert response.json()["data"]["id"] == team_id

    response = await client.delete(f"{API}/investigation-teams/{team_id}", headers=auth_headers(people["approver"]))
    assert response.status_code == 200

    stored = await db[Collections.DEVIATIONS].find_one({"id": deviation["id"]})
    assert stored["status"] == "Investigation Team Assigned"
    assert stored["investigation_team"] is None

    # The record is not stuck: a new team takes over without a status change
    response = await client.post(
        f"{API}/investigation-teams",
        json={"parent_id": deviation["id"], "members": [{"user_id": people["reviewer"]["id"]}]},
        headers=auth_headers(people["member"]),
    )
    assert response.status_code == 403

    response = await client.post(
        f"{API}/investigation-teams",
        json={"parent_id": deviation["id"], "members": [{"user_id": people["reviewer"]["id"]}]},
        headers=auth_headers(people["approver"]),
    )
    assert response.status_code == 201, response.text
    new_team_id = response.json()["data"]["team"]["id"]
    assert response.json()["data"]["parent"]["status"] == "Investigation Team Assigned"
    assert response.json()["data"]["parent"]["investigation_team"] == new_team_id

    # A second team while one exists is refused
    response = await client.post(
        f"{API}/investigation-teams",
        json={"parent_id": deviation["id"], "members": [{"user_id": people["member"]["id"]}]},
        headers=auth_headers(people["approver"]),
    )
    assert response.status_code == 400

    response = await client.post(
        f"{API}/investigation-teams/impact-assessment",
        json={"parent_id": deviation["id"], "answers": [{"question_id": master_data["yes_no"]["id"], "answer": True}]},
        headers=auth_headers(people["reviewer"]),
    )
    assert response.status_code == 201, response.text
    assert response.json()["data"]["parent"]["status"] == "Team Impact Assessment Done"


async def test_team_members_must_exist(client, people, department, master_data):
    deviation = await accepted_deviation(client, people, department, master_data)
    response = await client.post(
        f"{API}/investigation-teams",
        json={"parent_id": deviation["id"], "members": [{"user_id": "ghost"}]},
        headers=auth_headers(people["approver"]),
    )
    assert response.status_code == 400


async def test_historical_check_rejects_unknown_references(client, people, department, master_data):
    deviation = await accepted_deviation(client, people, department, master_data)
    response = await client.post(
        f"{API}/investigation-teams/historical-check",
        json={"deviation_id": deviation["id"], "similar_deviations": ["missing"]},
        headers=auth_headers(people["member"]),
    )
    assert response.status_code == 400


async def test_attachment_upload_and_delete(client, db, people, department, master_data):
    deviation = await create_deviation(client, people["creator"], department, master_data)

    response = await client.post(
        f"{API}/attachments/{deviation['id']}",
        files={"attachment": ("photo.png", b"\x89PNG", "image/png")},
        data={"type": "detailed_description"},
        headers=auth_headers(people["creator"]),
    )
    assert response.status_code == 201, response.text
    attachment = response.json()["data"]

    stored = await db[Collections.DEVIATIONS].find_one({"id": deviation["id"]})
    assert stored["detailed_description"]["attachments"] == [attachment["id"]]

    response = await client.delete(f"{API}/attachments/{attachment['id']}", headers=auth_headers(people["creator"]))
    assert response.status_code == 200
    stored = await db[Collections.DEVIATIONS].find_one({"id": deviation["id"]})
    assert stored["detailed_description"]["attachments"] == []


async def test_deviation_impact_records(client, people, department, master_data):
    deviation = await create_deviation(client, people["creator"], department, master_data)
    headers = auth_headers(people["creator"])

    response = await client.post(
        f"{API}/deviation-impacts",
        json={"deviation_id": deviation["id"], "answers": [{"question_id": master_data["rating"]["id"], "answer": 4}]},
        headers=headers,
    )
    assert response.status_code == 201
    impact_id = response.json()["data"]["id"]

    response = await client.put(
        f"{API}/deviation-impacts/{impact_id}",
        json={"answers": [{"question_id": master_data["rating"]["id"], "answer": "4"}]},
        headers=headers,
    )
    assert response.status_code == 400

    response = await client.get(f"{API}/deviation-impacts", params={"deviation_id": deviation["id"]}, headers=headers)
    assert [i["id"] for i in response.json()["data"]] == [impact_id]
