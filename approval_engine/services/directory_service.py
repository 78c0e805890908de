"""
Directory Service
Identity, profile and role lookups over the user tables
"""

from collections import defaultdict

from sqlalchemy.orm import Session

from approval_engine.models.user import User, UserRole, UserRoleAssignment
from approval_engine.services.chain_level_resolver import OrganizationDirectory, RequesterProfile
from approval_engine.utils.exceptions import EntityNotFound


class DirectoryService:
    """Capability queries the engine's callers use"""

    def get_profile(self, db: Session, user_id: int) -> RequesterProfile:
        """
        Get routing profile for a user

        Raises:
            EntityNotFound: Unknown user
        """
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise EntityNotFound("User", user_id)
        return RequesterProfile(
            user_id=user.id,
            organization_id=user.organization_id,
            manager_id=user.manager_id,
            grade_id=user.grade_id,
        )

    def has_role(self, db: Session, user_id: int, role: UserRole) -> bool:
        return db.query(UserRoleAssignment).filter(
            UserRoleAssignment.user_id == user_id,
            UserRoleAssignment.role == role
        ).first() is not None

    def load_directory(self, db: Session, organization_id: int) -> OrganizationDirectory:
        """
        Snapshot active users and role occupants of an organization

        Args:
            db: Database session
            organization_id: Organization ID

        Returns:
            OrganizationDirectory
        """
        active_ids = {
            user_id for (user_id,) in db.query(User.id).filter(
                User.organization_id == organization_id,
                User.is_active == True
            ).all()
        }

        occupants = defaultdict(list)
        rows = db.query(UserRoleAssignment.user_id, UserRoleAssignment.role).join(
            User, User.id == UserRoleAssignment.user_id
        ).filter(User.organization_id == organization_id).all()
        for user_id, role in rows:
            occupants[UserRole(role).value].append(user_id)

        return OrganizationDirectory(
            organization_id=organization_id,
            active_user_ids=active_ids,
            role_occupants=dict(occupants),
        )


# Create singleton instance
directory_service = DirectoryService()
