"""
Approval Chain Service
Administration of chains, their levels, grade assignments and employee grades
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from approval_engine.models.approval_chain import (
    ApprovalChain,
    ApprovalChainLevel,
    EmployeeGrade,
    GradeChainAssignment,
    LevelType,
)
from approval_engine.models.user import User
from approval_engine.services.audit_service import audit_service
from approval_engine.services.context import RequestContext
from approval_engine.utils.exceptions import ChainConfigurationError, EntityNotFound
from approval_engine.utils.helpers import coerce_amount
from approval_engine.utils.logger import setup_logger

logger = setup_logger()

LEVEL_FIELDS = ("level_type", "specific_user_id", "is_required", "skip_if_amount_under", "custom_message")


def ranges_overlap(a_min, a_max, b_min, b_max) -> bool:
    """Inclusive ranges; None means unbounded"""
    low = max(a_min if a_min is not None else float("-inf"), b_min if b_min is not None else float("-inf"))
    high = min(a_max if a_max is not None else float("inf"), b_max if b_max is not None else float("inf"))
    return low <= high


class ApprovalChainService:
    """Chain administration, every change audited"""

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------

    def list_chains(self, db: Session, ctx: RequestContext, include_inactive: bool = False) -> List[ApprovalChain]:
        query = db.query(ApprovalChain).filter(ApprovalChain.organization_id == ctx.organization_id)
        if not include_inactive:
            query = query.filter(ApprovalChain.is_active == True)
        return query.order_by(ApprovalChain.id).all()

    def get_chain(self, db: Session, ctx: RequestContext, chain_id: int) -> ApprovalChain:
        chain = db.query(ApprovalChain).filter(
            ApprovalChain.id == chain_id,
            ApprovalChain.organization_id == ctx.organization_id
        ).first()
        if not chain:
            raise EntityNotFound("ApprovalChain", chain_id)
        return chain

    def create_chain(
        self,
        db: Session,
        ctx: RequestContext,
        name: str,
        description: Optional[str] = None,
        is_default: bool = False,
        levels: Optional[List[Dict[str, Any]]] = None
    ) -> ApprovalChain:
        """
        Create a chain, optionally with its levels

        Args:
            db: Database session
            ctx: Acting context
            name: Chain name
            description: Free text
            is_default: Make this the organization's fallback chain
            levels: Level definitions in order (level_order is assigned)

        Returns:
            ApprovalChain: Created chain
        """
        if not name or not name.strip():
            raise ChainConfigurationError("Chain name is required", {"field": "name"})

        chain = ApprovalChain(
            organization_id=ctx.organization_id,
            name=name.strip(),
            description=description,
            is_active=True,
            is_default=False,
            created_by=ctx.user_id,
        )
        try:
            db.add(chain)
            db.flush()
            for definition in levels or []:
                self._append_level(db, ctx, chain, definition)
            if is_default:
                self._make_default(db, chain)
            audit_service.record(
                db, ctx, "create_chain", "approval_chain", chain.id,
                f"Created chain '{chain.name}' with {len(chain.levels)} level(s)",
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(chain)
        logger.info(f"Chain {chain.id} '{chain.name}' created in org {ctx.organization_id}")
        return chain

    def update_chain(self, db: Session, ctx: RequestContext, chain_id: int, **changes) -> ApprovalChain:
        """Update name/description/is_active/is_default"""
        chain = self.get_chain(db, ctx, chain_id)
        before = {"name": chain.name, "description": chain.description,
                  "is_active": chain.is_active, "is_default": chain.is_default}
        try:
            if changes.get("name") is not None:
                if not changes["name"].strip():
                    raise ChainConfigurationError("Chain name is required", {"field": "name"})
                chain.name = changes["name"].strip()
            if "description" in changes:
                chain.description = changes["description"]
            if changes.get("is_active") is not None:
                chain.is_active = bool(changes["is_active"])
            if changes.get("is_default") is True:
                self._make_default(db, chain)
            elif changes.get("is_default") is False:
                chain.is_default = False

            after = {"name": chain.name, "description": chain.description,
                     "is_active": chain.is_active, "is_default": chain.is_default}
            audit_service.record(
                db, ctx, "update_chain", "approval_chain", chain.id,
                f"Updated chain '{chain.name}'",
                changes={"before": before, "after": after},
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(chain)
        return chain

    def deactivate_chain(self, db: Session, ctx: RequestContext, chain_id: int) -> ApprovalChain:
        """Chains referenced by requests are kept; deactivation stops new routing"""
        chain = self.get_chain(db, ctx, chain_id)
        try:
            chain.is_active = False
            chain.is_default = False
            audit_service.record(db, ctx, "deactivate_chain", "approval_chain", chain.id,
                                 f"Deactivated chain '{chain.name}'")
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info(f"Chain {chain.id} deactivated")
        return chain

    def _make_default(self, db: Session, chain: ApprovalChain):
        db.query(ApprovalChain).filter(
            ApprovalChain.organization_id == chain.organization_id,
            ApprovalChain.id != chain.id,
            ApprovalChain.is_default == True
        ).update({ApprovalChain.is_default: False}, synchronize_session=False)
        chain.is_default = True
        chain.is_active = True

    # ------------------------------------------------------------------
    # Levels
    # ------------------------------------------------------------------

    def _validate_level(self, db: Session, ctx: RequestContext, definition: Dict[str, Any]) -> Dict[str, Any]:
        try:
            level_type = LevelType(definition.get("level_type"))
        except ValueError:
            raise ChainConfigurationError(
                f"Unknown level type '{definition.get('level_type')}'", {"field": "level_type"}
            )

        specific_user_id = definition.get("specific_user_id")
        if level_type == LevelType.SPECIFIC_USER:
            if specific_user_id is None:
                raise ChainConfigurationError(
                    "A specific_user level must reference a user", {"field": "specific_user_id"}
                )
            user = db.query(User).filter(
                User.id == specific_user_id,
                User.organization_id == ctx.organization_id
            ).first()
            if not user:
                raise ChainConfigurationError(
                    f"User {specific_user_id} is not a member of this organization",
                    {"field": "specific_user_id"},
                )
        elif specific_user_id is not None:
            raise ChainConfigurationError(
                f"Only specific_user levels may reference a user (got {level_type.value})",
                {"field": "specific_user_id"},
            )

        return {
            "level_type": level_type,
            "specific_user_id": specific_user_id,
            "is_required": bool(definition.get("is_required", True)),
            "skip_if_amount_under": coerce_amount(definition.get("skip_if_amount_under"), "skip_if_amount_under"),
            "custom_message": definition.get("custom_message"),
        }

    def _append_level(self, db: Session, ctx: RequestContext, chain: ApprovalChain, definition: Dict[str, Any]):
        values = self._validate_level(db, ctx, definition)
        level = ApprovalChainLevel(level_order=len(chain.levels) + 1, **values)
        chain.levels.append(level)
        db.flush()
        return level

    def add_level(self, db: Session, ctx: RequestContext, chain_id: int, definition: Dict[str, Any]) -> ApprovalChainLevel:
        """Append a level at the end of the chain"""
        chain = self.get_chain(db, ctx, chain_id)
        try:
            level = self._append_level(db, ctx, chain, definition)
            audit_service.record(
                db, ctx, "add_chain_level", "approval_chain", chain.id,
                f"Added level {level.level_order} ({level.level_type.value}) to '{chain.name}'",
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(level)
        return level

    def _get_level(self, chain: ApprovalChain, level_id: int) -> ApprovalChainLevel:
        for level in chain.levels:
            if level.id == level_id:
                return level
        raise EntityNotFound("ApprovalChainLevel", level_id)

    def update_level(
        self,
        db: Session,
        ctx: RequestContext,
        chain_id: int,
        level_id: int,
        definition: Dict[str, Any]
    ) -> ApprovalChainLevel:
        chain = self.get_chain(db, ctx, chain_id)
        level = self._get_level(chain, level_id)
        merged = {field: getattr(level, field) for field in LEVEL_FIELDS}
        merged.update(definition)
        # Switching away from specific_user drops the referenced user
        if "level_type" in definition and merged["level_type"] != LevelType.SPECIFIC_USER \
                and "specific_user_id" not in definition:
            merged["specific_user_id"] = None

        values = self._validate_level(db, ctx, merged)
        try:
            for field, value in values.items():
                setattr(level, field, value)
            audit_service.record(
                db, ctx, "update_chain_level", "approval_chain", chain.id,
                f"Updated level {level.level_order} of '{chain.name}'",
                changes={k: (v.value if isinstance(v, LevelType) else v) for k, v in values.items()},
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(level)
        return level

    def remove_level(self, db: Session, ctx: RequestContext, chain_id: int, level_id: int) -> ApprovalChain:
        """Remove a level; later levels move up so orders stay 1..n"""
        chain = self.get_chain(db, ctx, chain_id)
        level = self._get_level(chain, level_id)
        removed_order = level.level_order
        try:
            chain.levels.remove(level)
            db.flush()
            for position, remaining in enumerate(sorted(chain.levels, key=lambda l: l.level_order), start=1):
                remaining.level_order = position
            audit_service.record(
                db, ctx, "remove_chain_level", "approval_chain", chain.id,
                f"Removed level {removed_order} from '{chain.name}'",
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(chain)
        return chain

    # ------------------------------------------------------------------
    # Grade assignments
    # ------------------------------------------------------------------

    def list_assignments(self, db: Session, ctx: RequestContext) -> List[GradeChainAssignment]:
        return db.query(GradeChainAssignment).filter(
            GradeChainAssignment.organization_id == ctx.organization_id
        ).order_by(GradeChainAssignment.id).all()

    def create_assignment(
        self,
        db: Session,
        ctx: RequestContext,
        chain_id: int,
        grade_id: Optional[int] = None,
        min_amount=None,
        max_amount=None
    ) -> GradeChainAssignment:
        """
        Route (grade, amount range) to a chain

        Overlapping ranges are allowed; precedence decides between them at
        resolution time. Overlaps are logged so admins can spot them.
        """
        chain = self.get_chain(db, ctx, chain_id)
        min_amount = coerce_amount(min_amount, "min_amount")
        max_amount = coerce_amount(max_amount, "max_amount")
        if min_amount is not None and max_amount is not None and min_amount > max_amount:
            raise ChainConfigurationError(
                "min_amount cannot be greater than max_amount", {"field": "min_amount"}
            )
        if grade_id is not None:
            self.get_grade(db, ctx, grade_id)

        for existing in self.list_assignments(db, ctx):
            if existing.grade_id == grade_id and ranges_overlap(
                existing.min_amount, existing.max_amount, min_amount, max_amount
            ):
                logger.warning(
                    f"Assignment for grade {grade_id} [{min_amount}, {max_amount}] overlaps "
                    f"assignment {existing.id} [{existing.min_amount}, {existing.max_amount}]"
                )

        assignment = GradeChainAssignment(
            organization_id=ctx.organization_id,
            grade_id=grade_id,
            chain_id=chain.id,
            min_amount=min_amount,
            max_amount=max_amount,
        )
        try:
            db.add(assignment)
            db.flush()
            audit_service.record(
                db, ctx, "create_assignment", "grade_chain_assignment", assignment.id,
                f"Grade {grade_id} [{min_amount}, {max_amount}] -> chain '{chain.name}'",
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(assignment)
        return assignment

    def delete_assignment(self, db: Session, ctx: RequestContext, assignment_id: int):
        assignment = db.query(GradeChainAssignment).filter(
            GradeChainAssignment.id == assignment_id,
            GradeChainAssignment.organization_id == ctx.organization_id
        ).first()
        if not assignment:
            raise EntityNotFound("GradeChainAssignment", assignment_id)
        try:
            db.delete(assignment)
            audit_service.record(
                db, ctx, "delete_assignment", "grade_chain_assignment", assignment_id,
                f"Removed routing of grade {assignment.grade_id} to chain {assignment.chain_id}",
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

    # ------------------------------------------------------------------
    # Employee grades
    # ------------------------------------------------------------------

    def list_grades(self, db: Session, ctx: RequestContext) -> List[EmployeeGrade]:
        return db.query(EmployeeGrade).filter(
            EmployeeGrade.organization_id == ctx.organization_id,
            EmployeeGrade.is_active == True
        ).order_by(EmployeeGrade.level).all()

    def get_grade(self, db: Session, ctx: RequestContext, grade_id: int) -> EmployeeGrade:
        grade = db.query(EmployeeGrade).filter(
            EmployeeGrade.id == grade_id,
            EmployeeGrade.organization_id == ctx.organization_id
        ).first()
        if not grade:
            raise EntityNotFound("EmployeeGrade", grade_id)
        return grade

    def create_grade(self, db: Session, ctx: RequestContext, name: str, level: int = 1) -> EmployeeGrade:
        if not name or not name.strip():
            raise ChainConfigurationError("Grade name is required", {"field": "name"})
        if isinstance(level, bool) or not isinstance(level, int) or level < 1:
            raise ChainConfigurationError("Grade level must be a positive whole number", {"field": "level"})
        grade = EmployeeGrade(organization_id=ctx.organization_id, name=name.strip(), level=level)
        try:
            db.add(grade)
            db.flush()
            audit_service.record(db, ctx, "create_grade", "employee_grade", grade.id,
                                 f"Created grade '{grade.name}' (level {level})")
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(grade)
        return grade

    def update_grade(self, db: Session, ctx: RequestContext, grade_id: int, **changes) -> EmployeeGrade:
        grade = self.get_grade(db, ctx, grade_id)
        try:
            if changes.get("name") is not None:
                grade.name = changes["name"].strip()
            if changes.get("level") is not None:
                grade.level = changes["level"]
            if changes.get("is_active") is not None:
                grade.is_active = bool(changes["is_active"])
            audit_service.record(db, ctx, "update_grade", "employee_grade", grade.id,
                                 f"Updated grade '{grade.name}'",
                                 changes={k: v for k, v in changes.items() if v is not None})
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(grade)
        return grade


# Create singleton instance
approval_chain_service = ApprovalChainService()
