"""
Grade Assignment Resolver
Picks the approval chain for (organization, grade, amount)
"""

import math
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from approval_engine.config.settings import settings
from approval_engine.models.approval_chain import ApprovalChain, GradeChainAssignment
from approval_engine.utils.exceptions import NoApplicableChain
from approval_engine.utils.helpers import coerce_amount
from approval_engine.utils.logger import setup_logger

logger = setup_logger()


def assignment_matches(assignment: GradeChainAssignment, grade_id: Optional[int], amount: float) -> bool:
    """Grade match (or wildcard) and inclusive amount-range containment"""
    if assignment.grade_id is not None and assignment.grade_id != grade_id:
        return False
    low = assignment.min_amount if assignment.min_amount is not None else 0
    if amount < low:
        return False
    if assignment.max_amount is not None and amount > assignment.max_amount:
        return False
    return True


def precedence_key(assignment: GradeChainAssignment, grade_id: Optional[int]):
    """
    Sort key, most specific first:
    exact grade over wildcard, then the higher lower bound (so a range
    starting exactly at the amount wins the shared boundary), then the
    narrower range, then the oldest assignment.
    """
    exact_grade = assignment.grade_id is not None and assignment.grade_id == grade_id
    low = assignment.min_amount if assignment.min_amount is not None else 0
    high = assignment.max_amount if assignment.max_amount is not None else math.inf
    return (0 if exact_grade else 1, -low, high - low, assignment.id or 0)


def select_assignment(
    assignments: Iterable[GradeChainAssignment],
    grade_id: Optional[int],
    amount: float,
) -> Optional[GradeChainAssignment]:
    """Most specific matching assignment whose chain is still active"""
    candidates: List[GradeChainAssignment] = [
        a for a in assignments
        if assignment_matches(a, grade_id, amount) and (a.chain is None or a.chain.is_active)
    ]
    if not candidates:
        return None
    candidates.sort(key=lambda a: precedence_key(a, grade_id))
    if len(candidates) > 1:
        logger.debug(
            f"{len(candidates)} assignments match grade {grade_id} amount {amount}; "
            f"using assignment {candidates[0].id}"
        )
    return candidates[0]


def resolve_chain_from(
    assignments: Iterable[GradeChainAssignment],
    default_chain: Optional[ApprovalChain],
    organization_id: int,
    grade_id: Optional[int],
    amount,
) -> ApprovalChain:
    """
    Resolve the chain from already-fetched assignment rows

    Args:
        assignments: The organization's grade/amount assignments
        default_chain: The organization's active default chain, if any
        organization_id: Organization ID (for error reporting)
        grade_id: Requester grade, None when the requester has no grade
        amount: Request amount

    Returns:
        ApprovalChain: The matching chain, else the default chain

    Raises:
        InvalidAmount: Negative or non-numeric amount
        NoApplicableChain: Nothing matches and there is no default chain
    """
    amount = coerce_amount(amount, "amount", allow_none=False)
    assignment = select_assignment(assignments, grade_id, amount)
    if assignment is not None:
        return assignment.chain
    if default_chain is not None:
        return default_chain
    raise NoApplicableChain(organization_id, grade_id, amount)


class GradeAssignmentService:
    """Fetches assignments and resolves chains against the database"""

    def get_default_chain(self, db: Session, organization_id: int) -> Optional[ApprovalChain]:
        return db.query(ApprovalChain).filter(
            ApprovalChain.organization_id == organization_id,
            ApprovalChain.is_default == True,
            ApprovalChain.is_active == True
        ).order_by(ApprovalChain.id).first()

    def resolve_chain(
        self,
        db: Session,
        organization_id: int,
        grade_id: Optional[int],
        amount
    ) -> ApprovalChain:
        """
        Resolve the approval chain for a request

        Args:
            db: Database session
            organization_id: Organization ID
            grade_id: Requester grade ID (nullable)
            amount: Request amount

        Returns:
            ApprovalChain: Applicable chain
        """
        assignments = db.query(GradeChainAssignment).filter(
            GradeChainAssignment.organization_id == organization_id
        ).all()
        default_chain = self.get_default_chain(db, organization_id)

        chain = resolve_chain_from(assignments, default_chain, organization_id, grade_id, amount)
        logger.info(
            f"Resolved chain {chain.id} ({chain.name}) for org {organization_id}, "
            f"grade {grade_id}, amount {amount}"
        )
        return chain

    def try_resolve_chain(
        self,
        db: Session,
        organization_id: int,
        grade_id: Optional[int],
        amount
    ) -> Optional[ApprovalChain]:
        """
        Like resolve_chain, but honours REQUIRE_APPROVAL_CHAIN:
        when disabled a configuration gap means "no approval required".
        """
        try:
            return self.resolve_chain(db, organization_id, grade_id, amount)
        except NoApplicableChain:
            if settings.REQUIRE_APPROVAL_CHAIN:
                raise
            logger.warning(
                f"No approval chain for org {organization_id}, grade {grade_id}; "
                f"treating amount {amount} as not requiring approval"
            )
            return None


# Create singleton instance
grade_assignment_service = GradeAssignmentService()
