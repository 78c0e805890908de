"""
Grade Routes
Employee grade management endpoints
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from approval_engine.config.database import get_db
from approval_engine.models.user import User, UserRole
from approval_engine.schemas.approval_chain import GradeCreate, GradeResponse, GradeUpdate
from approval_engine.services.approval_chain_service import approval_chain_service
from approval_engine.services.auth_service import auth_service, context_of

router = APIRouter()

require_admin = auth_service.require_role(UserRole.ADMIN, UserRole.ORG_ADMIN)


@router.get("", response_model=List[GradeResponse])
async def list_grades(
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Active grades, most junior first"""
    return approval_chain_service.list_grades(db, context_of(current_user))


@router.post("", response_model=GradeResponse, status_code=status.HTTP_201_CREATED)
async def create_grade(
    data: GradeCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return approval_chain_service.create_grade(db, context_of(current_user), data.name, data.level)


@router.get("/{grade_id}", response_model=GradeResponse)
async def get_grade(
    grade_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    return approval_chain_service.get_grade(db, context_of(current_user), grade_id)


@router.patch("/{grade_id}", response_model=GradeResponse)
async def update_grade(
    grade_id: int,
    data: GradeUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return approval_chain_service.update_grade(
        db, context_of(current_user), grade_id, **data.model_dump(exclude_unset=True)
    )
