"""
Approval Chain Routes
Chain, level and grade assignment administration
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional

from approval_engine.config.database import get_db
from approval_engine.models.user import User, UserRole
from approval_engine.schemas.approval_chain import (
    AssignmentCreate,
    AssignmentResponse,
    ChainCreate,
    ChainLevelCreate,
    ChainLevelResponse,
    ChainLevelUpdate,
    ChainResolutionResponse,
    ChainResponse,
    ChainUpdate,
)
from approval_engine.services.approval_chain_service import approval_chain_service
from approval_engine.services.auth_service import auth_service, context_of
from approval_engine.services.grade_assignment_resolver import grade_assignment_service
from approval_engine.utils.logger import setup_logger

logger = setup_logger()
router = APIRouter()

require_admin = auth_service.require_role(UserRole.ADMIN, UserRole.ORG_ADMIN)


@router.get("", response_model=List[ChainResponse])
async def list_chains(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """List the organization's approval chains with their levels"""
    return approval_chain_service.list_chains(db, context_of(current_user), include_inactive)


@router.post("", response_model=ChainResponse, status_code=status.HTTP_201_CREATED)
async def create_chain(
    data: ChainCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Create a chain; levels are numbered in the order given"""
    return approval_chain_service.create_chain(
        db,
        context_of(current_user),
        name=data.name,
        description=data.description,
        is_default=data.is_default,
        levels=[level.model_dump() for level in data.levels],
    )


@router.get("/resolve", response_model=ChainResolutionResponse)
async def resolve_chain(
    amount: float,
    grade_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """
    Preview which chain a (grade, amount) routes to

    **Returns:**
    - chain: The chain that would be used
    """
    chain = grade_assignment_service.resolve_chain(db, current_user.organization_id, grade_id, amount)
    return ChainResolutionResponse(chain=ChainResponse.model_validate(chain), grade_id=grade_id, amount=amount)


@router.get("/assignments", response_model=List[AssignmentResponse])
async def list_assignments(
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    return approval_chain_service.list_assignments(db, context_of(current_user))


@router.post("/assignments", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    data: AssignmentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return approval_chain_service.create_assignment(
        db,
        context_of(current_user),
        chain_id=data.chain_id,
        grade_id=data.grade_id,
        min_amount=data.min_amount,
        max_amount=data.max_amount,
    )


@router.delete("/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assignment(
    assignment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    approval_chain_service.delete_assignment(db, context_of(current_user), assignment_id)


@router.get("/{chain_id}", response_model=ChainResponse)
async def get_chain(
    chain_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    return approval_chain_service.get_chain(db, context_of(current_user), chain_id)


@router.patch("/{chain_id}", response_model=ChainResponse)
async def update_chain(
    chain_id: int,
    data: ChainUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return approval_chain_service.update_chain(
        db, context_of(current_user), chain_id, **data.model_dump(exclude_unset=True)
    )


@router.delete("/{chain_id}", response_model=ChainResponse)
async def deactivate_chain(
    chain_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Deactivate (chains stay for the requests that used them)"""
    return approval_chain_service.deactivate_chain(db, context_of(current_user), chain_id)


@router.post("/{chain_id}/levels", response_model=ChainLevelResponse, status_code=status.HTTP_201_CREATED)
async def add_level(
    chain_id: int,
    data: ChainLevelCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Append a level to the end of the chain"""
    return approval_chain_service.add_level(db, context_of(current_user), chain_id, data.model_dump())


@router.patch("/{chain_id}/levels/{level_id}", response_model=ChainLevelResponse)
async def update_level(
    chain_id: int,
    level_id: int,
    data: ChainLevelUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return approval_chain_service.update_level(
        db, context_of(current_user), chain_id, level_id, data.model_dump(exclude_unset=True)
    )


@router.delete("/{chain_id}/levels/{level_id}", response_model=ChainResponse)
async def remove_level(
    chain_id: int,
    level_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Remove a level; the remaining levels are renumbered 1..n"""
    return approval_chain_service.remove_level(db, context_of(current_user), chain_id, level_id)
