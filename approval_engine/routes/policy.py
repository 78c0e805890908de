"""
Policy Routes
Policy rule management and ad-hoc policy evaluation
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from approval_engine.config.database import get_db
from approval_engine.models.user import User, UserRole
from approval_engine.schemas.policy import (
    PolicyEvaluateRequest,
    PolicyEvaluateResponse,
    PolicyRuleCreate,
    PolicyRuleResponse,
    PolicyRuleUpdate,
    PolicyViolationResponse,
)
from approval_engine.services.auth_service import auth_service, context_of
from approval_engine.services.policy_compliance import (
    RequestedAmounts,
    TripMeta,
    policy_compliance_service,
)
from approval_engine.utils.logger import setup_logger

logger = setup_logger()
router = APIRouter()

require_admin = auth_service.require_role(UserRole.ADMIN, UserRole.ORG_ADMIN, UserRole.ACCOUNTING_MANAGER)


@router.get("/rules", response_model=List[PolicyRuleResponse])
async def list_rules(
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Active policy rules of the organization"""
    return policy_compliance_service.get_rules(db, current_user.organization_id)


@router.post("/rules", response_model=PolicyRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    data: PolicyRuleCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return policy_compliance_service.create_rule(db, context_of(current_user), data.model_dump())


@router.patch("/rules/{rule_id}", response_model=PolicyRuleResponse)
async def update_rule(
    rule_id: int,
    data: PolicyRuleUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return policy_compliance_service.update_rule(
        db, context_of(current_user), rule_id, data.model_dump(exclude_unset=True)
    )


@router.delete("/rules/{rule_id}", response_model=PolicyRuleResponse)
async def deactivate_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return policy_compliance_service.deactivate_rule(db, context_of(current_user), rule_id)


@router.post("/evaluate", response_model=PolicyEvaluateResponse)
async def evaluate(
    data: PolicyEvaluateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """
    Check amounts against policy without creating a request

    **Returns:**
    - compliant: No violations
    - violations: One entry per category over its limit
    - requires_escalation: Worst overage crosses the escalation threshold
    """
    amounts = RequestedAmounts.from_mapping(data.model_dump())
    trip = TripMeta(nights=data.nights, days=data.days, destination_type=data.destination_type.value)
    grade_id = data.grade_id if data.grade_id is not None else current_user.grade_id

    evaluator = policy_compliance_service.evaluator
    violations = policy_compliance_service.evaluate_policy(
        db, current_user.organization_id, amounts, trip, grade_id
    )
    return PolicyEvaluateResponse(
        compliant=not violations,
        violations=[
            PolicyViolationResponse(
                **v.to_dict(),
                requires_special_approval=evaluator.requires_special_approval(v),
            )
            for v in violations
        ],
        requires_escalation=evaluator.requires_escalation(v.overage_percentage for v in violations),
    )
