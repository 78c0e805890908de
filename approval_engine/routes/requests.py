"""
Request Routes
Expense report and travel request endpoints
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional

from approval_engine.config.database import get_db
from approval_engine.models.spend_request import RequestStatus
from approval_engine.models.user import User
from approval_engine.schemas.spend_request import (
    SpendRequestCreate,
    SpendRequestResponse,
    SpendRequestUpdate,
    SubmitRequest,
)
from approval_engine.services.approval_workflow import approval_workflow_service
from approval_engine.services.auth_service import auth_service, context_of
from approval_engine.services.request_service import request_service
from approval_engine.utils.logger import setup_logger

logger = setup_logger()
router = APIRouter()


def _values(data) -> dict:
    values = data.model_dump(exclude_unset=True, exclude={"kind"})
    if values.get("destination_type") is not None:
        values["destination_type"] = values["destination_type"].value
    return values


@router.post("", response_model=SpendRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
    data: SpendRequestCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Create a draft expense report or travel request"""
    return request_service.create_request(db, context_of(current_user), data.kind.value, _values(data))


@router.get("", response_model=List[SpendRequestResponse])
async def list_requests(
    status_filter: Optional[RequestStatus] = None,
    skip: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """The acting user's requests, newest first"""
    return request_service.list_requests(
        db, context_of(current_user), status=status_filter, skip=skip, limit=limit
    )


@router.get("/{request_id}", response_model=SpendRequestResponse)
async def get_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    return approval_workflow_service.get_request(db, context_of(current_user), request_id)


@router.patch("/{request_id}", response_model=SpendRequestResponse)
async def update_request(
    request_id: int,
    data: SpendRequestUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Edit a draft or open request"""
    return request_service.update_request(db, context_of(current_user), request_id, _values(data))


@router.post("/{request_id}/submit", response_model=SpendRequestResponse)
async def submit_request(
    request_id: int,
    data: SubmitRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """
    Submit for approval

    **Errors:**
    - 404: No such request among the acting user's own
    - 422: Missing fields, invalid amounts or unexplained policy violations (all listed)
    - 500: Approval chain misconfigured for this requester
    """
    ctx = context_of(current_user)
    approval_workflow_service.submit(db, ctx, request_id, data.explanations)
    return approval_workflow_service.get_request(db, ctx, request_id)


@router.post("/{request_id}/reopen", response_model=SpendRequestResponse)
async def reopen_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Expense reports only: reopen a rejected report for editing"""
    ctx = context_of(current_user)
    approval_workflow_service.reopen(db, ctx, request_id)
    return approval_workflow_service.get_request(db, ctx, request_id)


@router.post("/{request_id}/close", response_model=SpendRequestResponse)
async def close_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Expense reports only: close the report"""
    ctx = context_of(current_user)
    approval_workflow_service.close(db, ctx, request_id)
    return approval_workflow_service.get_request(db, ctx, request_id)
