"""
Database Setup Script
Creates all tables and a demo organization with grades, chains and policy rules
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from approval_engine.config.database import Base, SessionLocal, engine
from approval_engine.models import (
    ApprovalChain,
    ApprovalChainLevel,
    DestinationType,
    EmployeeGrade,
    GradeChainAssignment,
    LevelType,
    Organization,
    PerType,
    PolicyCategory,
    PolicyRule,
    User,
    UserRole,
    UserRoleAssignment,
)


def create_tables():
    """Create all database tables"""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("✓ Database tables created successfully")


def add_user(db, org, email, full_name, department, roles, grade=None, manager=None):
    user = User(
        organization_id=org.id,
        email=email,
        full_name=full_name,
        department=department,
        grade_id=grade.id if grade else None,
        manager_id=manager.id if manager else None,
        is_active=True,
    )
    db.add(user)
    db.flush()
    for role in roles:
        db.add(UserRoleAssignment(user_id=user.id, role=role))
    return user


def create_demo_organization():
    """Create the demo organization, its people and its approval setup"""
    print("\nCreating demo organization...")
    db = SessionLocal()

    try:
        if db.query(Organization).first():
            print("✓ Organization already exists, skipping...")
            return

        org = Organization(name="Demo Travel Co.")
        db.add(org)
        db.flush()

        # Grades (lower level = more junior)
        junior = EmployeeGrade(organization_id=org.id, name="Junior", level=1)
        senior = EmployeeGrade(organization_id=org.id, name="Senior", level=2)
        director = EmployeeGrade(organization_id=org.id, name="Director", level=3)
        db.add_all([junior, senior, director])
        db.flush()

        # People
        org_admin = add_user(db, org, "admin@demo.travel", "Dana Admin", "Management",
                             [UserRole.ORG_ADMIN, UserRole.ADMIN], grade=director)
        accounting = add_user(db, org, "accounting@demo.travel", "Avi Accounts", "Finance",
                              [UserRole.ACCOUNTING_MANAGER], grade=senior, manager=org_admin)
        manager = add_user(db, org, "manager@demo.travel", "Maya Manager", "Sales",
                           [UserRole.MANAGER], grade=senior, manager=org_admin)
        add_user(db, org, "junior@demo.travel", "Jo Junior", "Sales",
                 [UserRole.USER], grade=junior, manager=manager)
        add_user(db, org, "senior@demo.travel", "Sam Senior", "Sales",
                 [UserRole.USER], grade=senior, manager=manager)

        # Chains
        standard = ApprovalChain(
            organization_id=org.id,
            name="Standard",
            description="Direct manager only",
            is_default=True,
            created_by=org_admin.id,
        )
        standard.levels = [
            ApprovalChainLevel(level_order=1, level_type=LevelType.DIRECT_MANAGER, is_required=True),
        ]
        large = ApprovalChain(
            organization_id=org.id,
            name="Large spend",
            description="Manager, then accounting, then the org admin above 20,000",
            created_by=org_admin.id,
        )
        large.levels = [
            ApprovalChainLevel(level_order=1, level_type=LevelType.DIRECT_MANAGER, is_required=True),
            ApprovalChainLevel(level_order=2, level_type=LevelType.ACCOUNTING_MANAGER, is_required=True),
            ApprovalChainLevel(
                level_order=3,
                level_type=LevelType.ORG_ADMIN,
                is_required=True,
                skip_if_amount_under=20000,
                custom_message="Spend above 20,000 needs executive sign-off",
            ),
        ]
        db.add_all([standard, large])
        db.flush()

        # Routing: everyone up to 5,000 on Standard, above that on Large spend
        db.add_all([
            GradeChainAssignment(organization_id=org.id, grade_id=None, chain_id=standard.id,
                                 min_amount=0, max_amount=5000),
            GradeChainAssignment(organization_id=org.id, grade_id=None, chain_id=large.id,
                                 min_amount=5000, max_amount=None),
        ])

        # Policy
        db.add_all([
            PolicyRule(organization_id=org.id, category=PolicyCategory.ACCOMMODATION, max_amount=200,
                       destination_type=DestinationType.ALL, per_type=PerType.PER_DAY, created_by=org_admin.id),
            PolicyRule(organization_id=org.id, category=PolicyCategory.ACCOMMODATION, max_amount=350,
                       destination_type=DestinationType.INTERNATIONAL, per_type=PerType.PER_DAY,
                       grade_id=director.id, created_by=org_admin.id),
            PolicyRule(organization_id=org.id, category=PolicyCategory.FOOD, max_amount=120,
                       destination_type=DestinationType.ALL, per_type=PerType.PER_DAY, created_by=org_admin.id),
            PolicyRule(organization_id=org.id, category=PolicyCategory.FLIGHTS, max_amount=2500,
                       destination_type=DestinationType.INTERNATIONAL, per_type=PerType.PER_TRIP,
                       created_by=org_admin.id),
            PolicyRule(organization_id=org.id, category=PolicyCategory.TRANSPORTATION, max_amount=150,
                       destination_type=DestinationType.ALL, per_type=PerType.PER_DAY, created_by=org_admin.id),
        ])

        db.commit()
        print(f"✓ Organization '{org.name}' created (id {org.id})")

    except Exception as e:
        db.rollback()
        print(f"✗ Error creating demo organization: {str(e)}")
        raise
    finally:
        db.close()


def print_setup_summary():
    """Print setup summary"""
    print("\n" + "=" * 70)
    print("✓ DATABASE SETUP COMPLETED SUCCESSFULLY!")
    print("=" * 70)

    print("\n📋 CREATED DATA SUMMARY:")
    print("  • Grades: Junior, Senior, Director")
    print("  • Users: org admin, accounting manager, manager, 2 employees")
    print("  • Chains: Standard (default, up to 5,000), Large spend (from 5,000)")
    print("  • Policy rules: accommodation, food, flights, transportation")

    print("\n🔐 ACTING AS A USER:")
    print("  Send X-Organization-Id and X-User-Id headers with every /api call")

    print("\n🚀 NEXT STEPS:")
    print("  1. Start the application: uvicorn approval_engine.main:app --reload")
    print("  2. Access API Documentation: http://localhost:8000/api/docs")

    print("\n" + "=" * 70 + "\n")


def main():
    """Main setup function"""
    print("=" * 70)
    print("APPROVAL CHAIN ENGINE - DATABASE SETUP")
    print("=" * 70)

    try:
        create_tables()
        create_demo_organization()
        print_setup_summary()

    except Exception as e:
        print(f"\n✗ Database setup failed: {str(e)}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
