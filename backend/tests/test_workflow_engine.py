"""
State machine guards for deviations, CAPA and change control.
"""
import pytest

from eqms.core.exceptions import ForbiddenError, InvalidStatusError
from eqms.models.workflow import EntityType, WorkflowAction, WorkflowStatus
from eqms.services.workflow_engine import WORKFLOW_DEFINITIONS, WorkflowEngine, is_qa

A = WorkflowAction
S = WorkflowStatus


def user(role: str, department_id: str = "prod", department_name: str = "Production", user_id: str = "u1") -> dict:
    return {
        "id": user_id,
        "role": {"name": role},
        "department_id": department_id,
        "department": {"id": department_id, "name": department_name},
    }


@pytest.mark.parametrize("entity_type", list(EntityType))
def test_review_stages_are_shared(entity_type):
    engine = WorkflowEngine(entity_type)

    allowed, transition, _ = engine.can_transition("Draft", A.SUBMIT)
    assert allowed
    assert transition.next_status == S.UNDER_DEPARTMENT_HEAD_REVIEW

    _, rejected, _ = engine.can_transition("Under Department Head Review", A.REJECT_DEPARTMENT)
    assert rejected.next_status == S.DRAFT
    _, rejected, _ = engine.can_transition("Approved By Department Head", A.REJECT_QA)
    assert rejected.next_status == S.DRAFT

    _, assigned, _ = engine.can_transition("Accepted By QA", A.ASSIGN_TEAM)
    assert assigned.next_status == S.INVESTIGATION_TEAM_ASSIGNED


@pytest.mark.parametrize("entity_type", list(EntityType))
def test_closed_is_terminal(entity_type):
    engine = WorkflowEngine(entity_type)
    assert engine.available_actions("Closed") == []
    assert S.CLOSED not in WORKFLOW_DEFINITIONS[entity_type]


def test_deviation_investigation_order():
    engine = WorkflowEngine(EntityType.DEVIATION)
    assert engine.available_actions("Investigation Team Assigned") == ["record_impact"]
    assert engine.available_actions("Team Impact Assessment Done") == ["record_root_cause"]
    assert engine.available_actions("Root Cause Analysis Done") == ["record_historical_check"]
    assert engine.available_actions("Historical Check Done") == ["close"]


def test_capa_branches_after_team_investigation():
    engine = WorkflowEngine(EntityType.CAPA)
    _, transition, _ = engine.can_transition("Investigation Team Assigned", A.RECORD_ROOT_CAUSE)
    assert transition.next_status == S.TEAM_INVESTIGATION_DONE
    assert set(engine.available_actions("Team Investigation Done")) == {
        "start_immediate_actions", "initiate_change_control",
    }
    assert engine.available_actions("Immediate Actions In Progress") == ["close"]
    assert engine.available_actions("Change Control Initiated") == ["close"]


def test_change_control_needs_acknowledgement_before_close():
    engine = WorkflowEngine(EntityType.CHANGE_CONTROL)
    allowed, _, _ = engine.can_transition("Historical Check Done", A.CLOSE)
    assert not allowed
    assert engine.available_actions("Historical Check Done") == ["acknowledge"]
    assert engine.available_actions("Acknowledged By Approver") == ["close"]
    allowed, _, _ = engine.can_transition("Investigation Team Assigned", A.RECORD_ROOT_CAUSE)
    assert not allowed


def test_unknown_status_is_rejected():
    allowed, transition, reason = WorkflowEngine(EntityType.DEVIATION).can_transition("Pending", A.SUBMIT)
    assert not allowed
    assert transition is None
    assert "Unknown status" in reason


def test_resolve_lists_expected_statuses():
    engine = WorkflowEngine(EntityType.DEVIATION)
    with pytest.raises(InvalidStatusError) as exc_info:
        engine.resolve({"id": "d1", "status": "Draft"}, A.ASSIGN_TEAM)
    assert exc_info.value.expected == ["Accepted By QA"]
    assert exc_info.value.status_code == 400


def test_authorize_checks_role():
    engine = WorkflowEngine(EntityType.DEVIATION)
    transition = engine.resolve({"status": "Draft"}, A.SUBMIT)
    with pytest.raises(ForbiddenError):
        engine.authorize(transition, {"department_id": "prod"}, user("Reviewer"))
    engine.authorize(transition, {"department_id": "prod"}, user("Creator"))


def test_authorize_department_scope_with_qa_exception():
    engine = WorkflowEngine(EntityType.DEVIATION)
    transition = engine.resolve({"status": "Under Department Head Review"}, A.APPROVE_DEPARTMENT)
    entity = {"department_id": "prod"}

    with pytest.raises(ForbiddenError):
        engine.authorize(transition, entity, user("Reviewer", "wh", "Warehouse"))
    engine.authorize(transition, entity, user("Reviewer", "qa", "QA"))
    engine.authorize(transition, entity, user("Reviewer"))


def test_qa_review_has_no_department_scope():
    engine = WorkflowEngine(EntityType.CAPA)
    transition = engine.resolve({"status": "Approved By Department Head"}, A.ACCEPT_QA)
    engine.authorize(transition, {"department_id": "prod"}, user("Approver", "wh", "Warehouse"))


def test_authorize_team_scope():
    engine = WorkflowEngine(EntityType.DEVIATION)
    transition = engine.resolve({"status": "Investigation Team Assigned"}, A.RECORD_IMPACT)
    team = {"members": [{"user_id": "member"}]}

    with pytest.raises(ForbiddenError):
        engine.authorize(transition, {}, user("Reviewer", user_id="outsider"), team)
    with pytest.raises(ForbiddenError):
        engine.authorize(transition, {}, user("Reviewer", user_id="member"), None)
    engine.authorize(transition, {}, user("Creator", user_id="member"), team)


def test_is_qa():
    assert is_qa(user("Creator", "qa", "QA"))
    assert not is_qa(user("Creator", "qa", "Quality Assurance"))
    assert not is_qa({"department": None})
