"""
Persisting transitions: conditional status updates and what happens when
another request moves the record first.
"""
from datetime import datetime, timezone
import uuid

import pytest

from eqms.core.exceptions import InvalidStatusError
from eqms.db.mongo import Collections
from eqms.models.workflow import EntityType, RoleName, WorkflowAction, WorkflowStatus
from eqms.services.rbac_service import RBACService
from eqms.services.workflow_service import WorkflowService


async def insert_deviation(db, department: dict, status: WorkflowStatus) -> dict:
    now = datetime.now(timezone.utc)
    deviation = {
        "id": str(uuid.uuid4()),
        "deviation_number": "QUA-DEV001",
        "department_id": department["id"],
        "status": status.value,
        "investigation_team": None,
        "created_at": now,
        "updated_at": now,
        "status_history": [],
    }
    await db[Collections.DEVIATIONS].insert_one(dict(deviation))
    return deviation


@pytest.fixture
async def approver(db, make_user, seeded):
    user = await make_user(RoleName.APPROVER, seeded["qa"])
    return await RBACService(db).load_user_context(user["id"])


@pytest.fixture
async def creator(db, make_user, department):
    user = await make_user(RoleName.CREATOR, department)
    return await RBACService(db).load_user_context(user["id"])


async def test_transition_returns_updated_record(db, department, creator):
    deviation = await insert_deviation(db, department, WorkflowStatus.DRAFT)
    workflow = WorkflowService(db, EntityType.DEVIATION)

    updated = await workflow.submit(deviation["id"], creator)

    assert updated["status"] == "Under Department Head Review"
    assert "_id" not in updated
    assert updated["submitted_by"] == creator["id"]
    assert updated["status_history"][-1]["action"] == "submit"
    stored = await db[Collections.DEVIATIONS].find_one({"id": deviation["id"]})
    assert stored["status"] == "Under Department Head Review"


async def test_commit_refuses_a_record_that_moved(db, department, creator):
    deviation = await insert_deviation(db, department, WorkflowStatus.DRAFT)
    workflow = WorkflowService(db, EntityType.DEVIATION)
    entity, transition = await workflow.prepare(deviation["id"], WorkflowAction.SUBMIT, creator)

    await db[Collections.DEVIATIONS].update_one(
        {"id": deviation["id"]}, {"$set": {"status": WorkflowStatus.UNDER_DEPARTMENT_HEAD_REVIEW.value}}
    )

    with pytest.raises(InvalidStatusError):
        await workflow.commit(entity, WorkflowAction.SUBMIT, transition, creator)
    stored = await db[Collections.DEVIATIONS].find_one({"id": deviation["id"]})
    assert stored["status_history"] == []


async def test_side_record_is_removed_when_the_parent_moved(db, department, approver):
    deviation = await insert_deviation(db, department, WorkflowStatus.ACCEPTED_BY_QA)
    workflow = WorkflowService(db, EntityType.DEVIATION)
    entity, transition = await workflow.prepare(deviation["id"], WorkflowAction.ASSIGN_TEAM, approver)

    # QA rejects the deviation before the team is stored
    await db[Collections.DEVIATIONS].update_one(
        {"id": deviation["id"]}, {"$set": {"status": WorkflowStatus.DRAFT.value}}
    )

    team = {"id": str(uuid.uuid4()), "parent_id": deviation["id"], "members": []}
    with pytest.raises(InvalidStatusError):
        await workflow.commit_with_record(
            entity, WorkflowAction.ASSIGN_TEAM, transition, approver,
            Collections.DEVIATION_TEAMS, team,
            extra={"investigation_team": team["id"]},
        )

    assert await db[Collections.DEVIATION_TEAMS].count_documents({}) == 0
    stored = await db[Collections.DEVIATIONS].find_one({"id": deviation["id"]})
    assert stored["status"] == "Draft"
    assert stored["investigation_team"] is None


async def test_revert_restores_status_and_history(db, department, approver):
    deviation = await insert_deviation(db, department, WorkflowStatus.ACCEPTED_BY_QA)
    workflow = WorkflowService(db, EntityType.DEVIATION)
    entity, transition = await workflow.prepare(deviation["id"], WorkflowAction.ASSIGN_TEAM, approver)
    extra = {"investigation_team": "t1"}

    updated = await workflow.commit(entity, WorkflowAction.ASSIGN_TEAM, transition, approver, extra)
    await workflow.revert(entity, updated, extra)

    stored = await db[Collections.DEVIATIONS].find_one({"id": deviation["id"]})
    assert stored["status"] == "Accepted By QA"
    assert stored["investigation_team"] is None
    assert stored["status_history"] == []
