"""
Workflow Engine - Status Transition Guard

Deterministic state machine shared by Deviation, CAPA and Change Control.
Pure business logic: no HTTP and no database calls. Persistence of a
transition lives in services/workflow_service.py.

Each transition names the next status, the roles allowed to trigger it and
the scope in which the actor must sit:

- department: the actor's department must own the entity, unless the actor
  belongs to QA
- any: the role alone is enough
- team: the actor must be a member of the entity's investigation team
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging

from eqms.core.config import settings
from eqms.core.exceptions import ForbiddenError, InvalidStatusError
from eqms.models.workflow import EntityType, RoleName, WorkflowAction, WorkflowStatus

logger = logging.getLogger(__name__)

SCOPE_DEPARTMENT = "department"
SCOPE_ANY = "any"
SCOPE_TEAM = "team"


@dataclass(frozen=True)
class Transition:
    next_status: WorkflowStatus
    roles: Tuple[RoleName, ...] = ()
    scope: str = SCOPE_ANY


S = WorkflowStatus
A = WorkflowAction

# Draft -> department head -> QA -> team assignment, identical for every entity
_REVIEW_STAGES: Dict[WorkflowStatus, Dict[WorkflowAction, Transition]] = {
    S.DRAFT: {
        A.SUBMIT: Transition(S.UNDER_DEPARTMENT_HEAD_REVIEW, (RoleName.CREATOR,), SCOPE_DEPARTMENT),
    },
    S.UNDER_DEPARTMENT_HEAD_REVIEW: {
        A.APPROVE_DEPARTMENT: Transition(S.APPROVED_BY_DEPARTMENT_HEAD, (RoleName.REVIEWER,), SCOPE_DEPARTMENT),
        A.REJECT_DEPARTMENT: Transition(S.DRAFT, (RoleName.REVIEWER,), SCOPE_DEPARTMENT),
    },
    S.APPROVED_BY_DEPARTMENT_HEAD: {
        A.ACCEPT_QA: Transition(S.ACCEPTED_BY_QA, (RoleName.APPROVER,)),
        A.REJECT_QA: Transition(S.DRAFT, (RoleName.APPROVER,)),
    },
    S.ACCEPTED_BY_QA: {
        A.ASSIGN_TEAM: Transition(S.INVESTIGATION_TEAM_ASSIGNED, (RoleName.APPROVER,)),
    },
}

# Format: {entity_type: {current_status: {action: Transition}}}
WORKFLOW_DEFINITIONS: Dict[EntityType, Dict[WorkflowStatus, Dict[WorkflowAction, Transition]]] = {
    EntityType.DEVIATION: {
        **_REVIEW_STAGES,
        S.INVESTIGATION_TEAM_ASSIGNED: {
            A.RECORD_IMPACT: Transition(S.TEAM_IMPACT_ASSESSMENT_DONE, scope=SCOPE_TEAM),
        },
        S.TEAM_IMPACT_ASSESSMENT_DONE: {
            A.RECORD_ROOT_CAUSE: Transition(S.ROOT_CAUSE_ANALYSIS_DONE, scope=SCOPE_TEAM),
        },
        S.ROOT_CAUSE_ANALYSIS_DONE: {
            A.RECORD_HISTORICAL_CHECK: Transition(S.HISTORICAL_CHECK_DONE, scope=SCOPE_TEAM),
        },
        S.HISTORICAL_CHECK_DONE: {
            A.CLOSE: Transition(S.CLOSED, (RoleName.APPROVER,)),
        },
    },
    EntityType.CAPA: {
        **_REVIEW_STAGES,
        S.INVESTIGATION_TEAM_ASSIGNED: {
            A.RECORD_ROOT_CAUSE: Transition(S.TEAM_INVESTIGATION_DONE, scope=SCOPE_TEAM),
        },
        S.TEAM_INVESTIGATION_DONE: {
            A.START_IMMEDIATE_ACTIONS: Transition(S.IMMEDIATE_ACTIONS_IN_PROGRESS, scope=SCOPE_TEAM),
            A.INITIATE_CHANGE_CONTROL: Transition(S.CHANGE_CONTROL_INITIATED, scope=SCOPE_TEAM),
        },
        S.IMMEDIATE_ACTIONS_IN_PROGRESS: {
            A.CLOSE: Transition(S.CLOSED, (RoleName.APPROVER,)),
        },
        S.CHANGE_CONTROL_INITIATED: {
            A.CLOSE: Transition(S.CLOSED, (RoleName.APPROVER,)),
        },
    },
    EntityType.CHANGE_CONTROL: {
        **_REVIEW_STAGES,
        S.INVESTIGATION_TEAM_ASSIGNED: {
            A.RECORD_IMPACT: Transition(S.TEAM_IMPACT_ASSESSMENT_DONE, scope=SCOPE_TEAM),
        },
        S.TEAM_IMPACT_ASSESSMENT_DONE: {
            A.RECORD_HISTORICAL_CHECK: Transition(S.HISTORICAL_CHECK_DONE, scope=SCOPE_TEAM),
        },
        S.HISTORICAL_CHECK_DONE: {
            A.ACKNOWLEDGE: Transition(S.ACKNOWLEDGED_BY_APPROVER, (RoleName.APPROVER,)),
        },
        S.ACKNOWLEDGED_BY_APPROVER: {
            A.CLOSE: Transition(S.CLOSED, (RoleName.APPROVER,)),
        },
    },
}

ENTITY_LABELS = {
    EntityType.DEVIATION: "Deviation",
    EntityType.CAPA: "CAPA",
    EntityType.CHANGE_CONTROL: "Change control",
}


def role_name(user: dict) -> Optional[str]:
    role = user.get("role") or {}
    return role.get("name")


def department_name(user: dict) -> Optional[str]:
    department = user.get("department") or {}
    return department.get("name")


def is_qa(user: dict) -> bool:
    """QA members act across departments"""
    return department_name(user) == settings.QA_DEPARTMENT_NAME


def is_team_member(team: Optional[dict], user_id: str) -> bool:
    if not team:
        return False
    return any(member.get("user_id") == user_id for member in team.get("members", []))


class WorkflowEngine:
    """
    State machine for one workflow entity type
    """

    def __init__(self, entity_type: EntityType):
        self.entity_type = EntityType(entity_type)
        self.definition = WORKFLOW_DEFINITIONS[self.entity_type]
        self.label = ENTITY_LABELS[self.entity_type]

    def can_transition(
        self, current_status: Optional[str], action: WorkflowAction
    ) -> Tuple[bool, Optional[Transition], str]:
        """
        Check whether action is valid from current_status
        Returns: (allowed, transition, reason)
        """
        try:
            status = WorkflowStatus(current_status)
        except ValueError:
            return False, None, f"Unknown status '{current_status}'"

        transitions = self.definition.get(status)
        if not transitions:
            return False, None, f"No transitions from '{current_status}'"

        transition = transitions.get(WorkflowAction(action))
        if transition is None:
            return False, None, f"Action '{WorkflowAction(action).value}' not allowed from '{current_status}'"

        return True, transition, "Transition allowed"

    def allowed_from(self, action: WorkflowAction) -> List[str]:
        """Statuses from which action is valid"""
        return [
            status.value for status, transitions in self.definition.items()
            if WorkflowAction(action) in transitions
        ]

    def available_actions(self, current_status: str) -> List[str]:
        try:
            transitions = self.definition.get(WorkflowStatus(current_status), {})
        except ValueError:
            return []
        return [action.value for action in transitions]

    def resolve(self, entity: dict, action: WorkflowAction) -> Transition:
        """Transition for action from the entity's status; raises InvalidStatusError"""
        allowed, transition, reason = self.can_transition(entity.get("status"), action)
        if not allowed:
            logger.warning(
                "Blocked %s transition: id=%s status=%s action=%s reason=%s",
                self.entity_type.value, entity.get("id"), entity.get("status"),
                WorkflowAction(action).value, reason,
            )
            raise InvalidStatusError(
                self.label, entity.get("status"), self.allowed_from(action)
            )
        return transition

    def authorize(
        self,
        transition: Transition,
        entity: dict,
        user: dict,
        team: Optional[dict] = None,
    ) -> None:
        """Raise ForbiddenError unless user may perform transition on entity"""
        if transition.roles and role_name(user) not in {r.value for r in transition.roles}:
            raise ForbiddenError(
                f"Only users with role {' or '.join(r.value for r in transition.roles)} can perform this action"
            )

        if transition.scope == SCOPE_DEPARTMENT:
            if user.get("department_id") != entity.get("department_id") and not is_qa(user):
                raise ForbiddenError(
                    f"You can only act on {self.label.lower()} records of your own department"
                )

        if transition.scope == SCOPE_TEAM:
            if not team:
                raise ForbiddenError(f"No investigation team is assigned to this {self.label.lower()}")
            if not is_team_member(team, user["id"]):
                raise ForbiddenError(
                    f"Only investigation team members can perform this action on this {self.label.lower()}"
                )
