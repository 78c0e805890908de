"""
Chain Level Resolver
Turns the ordered levels of a chain into concrete approvers.

Resolution works on data the caller has already fetched (the requester's
profile and an OrganizationDirectory snapshot of role occupants), so every
function here is free of I/O and can be re-run from any position.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from approval_engine.config.settings import settings
from approval_engine.models.approval_chain import ApprovalChainLevel, LevelType
from approval_engine.models.user import UserRole
from approval_engine.utils.exceptions import NoManagerAssigned, NoRoleOccupant, ReferencedUserMissing
from approval_engine.utils.logger import setup_logger

logger = setup_logger()


SKIP_AMOUNT_UNDER_THRESHOLD = "amount_under_threshold"
SKIP_UNRESOLVED_OPTIONAL = "unresolved_optional"


@dataclass(frozen=True)
class RequesterProfile:
    """Who is asking: the links the engine routes on"""
    user_id: int
    organization_id: int
    manager_id: Optional[int] = None
    grade_id: Optional[int] = None


@dataclass
class OrganizationDirectory:
    """Snapshot of an organization's active users and role occupants"""
    organization_id: int
    active_user_ids: set = field(default_factory=set)
    role_occupants: Dict[str, List[int]] = field(default_factory=dict)

    def occupants(self, role: UserRole, exclude: Iterable[int] = ()) -> List[int]:
        excluded = set(exclude)
        users = self.role_occupants.get(role.value, [])
        return sorted(u for u in users if u in self.active_user_ids and u not in excluded)

    def is_active(self, user_id: Optional[int]) -> bool:
        return user_id is not None and user_id in self.active_user_ids


@dataclass(frozen=True)
class ResolvedApprover:
    level_order: int
    level_type: LevelType
    approver_id: int
    candidate_ids: Tuple[int, ...]
    is_required: bool = True
    custom_message: Optional[str] = None


@dataclass(frozen=True)
class SkippedLevel:
    level_order: int
    level_type: LevelType
    reason: str


LevelResolution = Union[ResolvedApprover, SkippedLevel]

ROLE_FOR_LEVEL = {
    LevelType.ORG_ADMIN: UserRole.ORG_ADMIN,
    LevelType.ACCOUNTING_MANAGER: UserRole.ACCOUNTING_MANAGER,
}


class ChainLevelResolver:
    """Resolves chain levels to approvers, applying auto-skip rules"""

    def __init__(self, org_admin_fanout: Optional[bool] = None):
        self.org_admin_fanout = settings.ORG_ADMIN_FANOUT if org_admin_fanout is None else org_admin_fanout

    def should_skip(self, level: ApprovalChainLevel, request_total: float) -> bool:
        """A level with skip_if_amount_under = X is skipped iff total < X"""
        threshold = level.skip_if_amount_under
        return threshold is not None and request_total < threshold

    def resolve_approver(
        self,
        level: ApprovalChainLevel,
        profile: RequesterProfile,
        directory: OrganizationDirectory,
        request_total: float
    ) -> LevelResolution:
        """
        Resolve one level to an approver or a skip

        Args:
            level: Chain level
            profile: Requester profile
            directory: Organization directory snapshot
            request_total: Request total used for skip thresholds

        Returns:
            ResolvedApprover or SkippedLevel

        Raises:
            NoManagerAssigned: Required direct_manager level, no manager
            NoRoleOccupant: Required role level, nobody holds the role
            ReferencedUserMissing: specific_user points to a missing user
        """
        order = level.level_order
        level_type = LevelType(level.level_type)

        if self.should_skip(level, request_total):
            logger.info(
                f"Level {order} ({level_type.value}) skipped: total {request_total} "
                f"under {level.skip_if_amount_under}"
            )
            return SkippedLevel(order, level_type, SKIP_AMOUNT_UNDER_THRESHOLD)

        candidates: List[int] = []

        if level_type == LevelType.DIRECT_MANAGER:
            if directory.is_active(profile.manager_id):
                candidates = [profile.manager_id]
            elif level.is_required:
                raise NoManagerAssigned(profile.user_id, order)

        elif level_type == LevelType.SPECIFIC_USER:
            if not directory.is_active(level.specific_user_id):
                raise ReferencedUserMissing(level.specific_user_id, order)
            candidates = [level.specific_user_id]

        else:
            role = ROLE_FOR_LEVEL[level_type]
            occupants = directory.occupants(role, exclude=[profile.user_id])
            if occupants:
                fan_out = level_type == LevelType.ORG_ADMIN and self.org_admin_fanout
                candidates = occupants if fan_out else occupants[:1]
            elif level.is_required:
                raise NoRoleOccupant(role.value, directory.organization_id, order)

        if not candidates:
            logger.info(f"Optional level {order} ({level_type.value}) has no approver; skipping")
            return SkippedLevel(order, level_type, SKIP_UNRESOLVED_OPTIONAL)

        return ResolvedApprover(
            level_order=order,
            level_type=level_type,
            approver_id=candidates[0],
            candidate_ids=tuple(candidates),
            is_required=bool(level.is_required),
            custom_message=level.custom_message,
        )

    def iter_levels(
        self,
        levels: Iterable[ApprovalChainLevel],
        profile: RequesterProfile,
        directory: OrganizationDirectory,
        request_total: float,
        after_order: int = 0
    ) -> Iterator[LevelResolution]:
        """
        Lazily resolve levels in ascending order, starting after after_order.
        A level is only resolved when the consumer pulls it.
        """
        for level in sorted(levels, key=lambda l: l.level_order):
            if level.level_order <= after_order:
                continue
            yield self.resolve_approver(level, profile, directory, request_total)

    def next_approver(
        self,
        levels: Iterable[ApprovalChainLevel],
        profile: RequesterProfile,
        directory: OrganizationDirectory,
        request_total: float,
        after_order: int = 0
    ) -> Tuple[Optional[ResolvedApprover], List[SkippedLevel]]:
        """
        First non-skipped level after after_order

        Returns:
            (approver or None when the chain is exhausted, levels skipped on the way)
        """
        skipped: List[SkippedLevel] = []
        for resolution in self.iter_levels(levels, profile, directory, request_total, after_order):
            if isinstance(resolution, SkippedLevel):
                skipped.append(resolution)
                continue
            return resolution, skipped
        return None, skipped

    def resolve_all(
        self,
        levels: Iterable[ApprovalChainLevel],
        profile: RequesterProfile,
        directory: OrganizationDirectory,
        request_total: float
    ) -> List[ResolvedApprover]:
        """Every non-skipped level, fully materialized (preview use)"""
        return [
            r for r in self.iter_levels(levels, profile, directory, request_total)
            if isinstance(r, ResolvedApprover)
        ]


# Create singleton instance
chain_level_resolver = ChainLevelResolver()
