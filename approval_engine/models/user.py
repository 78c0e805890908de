"""
User Model
Organization members, their manager link, grade and roles
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from approval_engine.config.database import Base, enum_values


class UserRole(str, enum.Enum):
    """Application roles"""
    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"
    ACCOUNTING_MANAGER = "accounting_manager"
    ORG_ADMIN = "org_admin"


class Organization(Base):
    """Organization model"""
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    users = relationship("User", back_populates="organization")

    def __repr__(self):
        return f"<Organization {self.name}>"


class User(Base):
    """User model"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=False)
    department = Column(String, nullable=True)

    # Hierarchy links supplied by the organization
    manager_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    grade_id = Column(Integer, ForeignKey("employee_grades.id"), nullable=True)

    is_active = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    organization = relationship("Organization", back_populates="users")
    manager = relationship("User", remote_side=[id])
    grade = relationship("EmployeeGrade")
    roles = relationship("UserRoleAssignment", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user")

    def __repr__(self):
        return f"<User {self.email}>"

    @property
    def role_names(self) -> set:
        return {assignment.role.value for assignment in self.roles}


class UserRoleAssignment(Base):
    """Role held by a user"""
    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(Enum(UserRole, values_callable=enum_values), nullable=False)

    user = relationship("User", back_populates="roles")

    def __repr__(self):
        return f"<UserRoleAssignment {self.user_id}:{self.role.value}>"
