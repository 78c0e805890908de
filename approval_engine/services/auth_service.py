"""
Context Service
Resolves the acting user and organization of an HTTP request.

Authentication happens upstream; this service trusts the
X-Organization-Id / X-User-Id headers the gateway forwards and checks
that they name an active member of that organization.
"""

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from approval_engine.config.database import get_db
from approval_engine.models.user import User, UserRole
from approval_engine.services.context import RequestContext
from approval_engine.utils.logger import setup_logger

logger = setup_logger()


def context_of(user: User) -> RequestContext:
    return RequestContext(organization_id=user.organization_id, user_id=user.id)


class AuthService:
    """Request context dependencies"""

    async def get_current_user(
        self,
        x_organization_id: int = Header(...),
        x_user_id: int = Header(...),
        db: Session = Depends(get_db)
    ) -> User:
        """
        Get the acting user from the context headers

        Args:
            x_organization_id: Organization the call acts in
            x_user_id: Acting user
            db: Database session

        Returns:
            User: Acting user

        Raises:
            HTTPException: Unknown user, wrong organization or inactive account
        """
        user = db.query(User).filter(User.id == x_user_id).first()
        if user is None or user.organization_id != x_organization_id:
            logger.warning(f"Rejected context: user {x_user_id} in org {x_organization_id}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unknown user for this organization",
            )

        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User account is inactive"
            )

        return user

    def require_role(self, *roles: UserRole):
        """
        Dependency requiring one of the given roles

        Args:
            roles: Accepted roles
        """
        async def role_checker(current_user: User = Depends(self.get_current_user)):
            if not set(current_user.role_names) & {r.value for r in roles}:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Access denied. Required role(s): {', '.join(r.value for r in roles)}"
                )
            return current_user

        return role_checker


# Create singleton instance
auth_service = AuthService()
