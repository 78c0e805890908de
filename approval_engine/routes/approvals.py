"""
Approval Routes
Pending approvals and approver decisions
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from approval_engine.config.database import get_db
from approval_engine.models.user import User
from approval_engine.schemas.approval import ApprovalResponse, DecisionCreate, DecisionResponse
from approval_engine.services.approval_workflow import approval_workflow_service
from approval_engine.services.auth_service import auth_service, context_of
from approval_engine.utils.logger import setup_logger

logger = setup_logger()
router = APIRouter()


@router.get("/pending", response_model=List[ApprovalResponse])
async def get_pending_approvals(
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Approvals waiting on the acting user, newest first"""
    pending = approval_workflow_service.pending_for(db, context_of(current_user))
    logger.info(f"User {current_user.id} viewing {len(pending)} pending approvals")
    return pending


@router.post("/{approval_id}/decide", response_model=DecisionResponse)
async def decide(
    approval_id: int,
    data: DecisionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """
    Approve, approve with changes, or reject

    **Errors:**
    - 403: Acting user is not an approver of this level
    - 409: Someone else already decided this approval
    """
    new_status = approval_workflow_service.decide(
        db,
        context_of(current_user),
        approval_id,
        data.decision.value,
        modified_amounts=data.modified_amounts,
        comments=data.comments,
    )
    request_id = approval_workflow_service.get_approval(db, approval_id).request_id
    return DecisionResponse(approval_id=approval_id, request_id=request_id, request_status=new_status.value)
