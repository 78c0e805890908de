"""
Approval Chain Tests
Shared test database and organization fixtures, plus chain/grade admin endpoints
"""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from types import SimpleNamespace
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from approval_engine.main import app
from approval_engine.config.database import Base, get_db
from approval_engine.models import (
    ApprovalChain,
    ApprovalChainLevel,
    AuditLog,
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
from approval_engine.services import RequestContext
from approval_engine.services.approval_chain_service import approval_chain_service
from approval_engine.utils.exceptions import ChainConfigurationError

# Test database
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    """Override database dependency for testing"""
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db
client = TestClient(app)


def headers(org, user_id):
    """Context headers for acting as a user"""
    return {"X-Organization-Id": str(org.id), "X-User-Id": str(user_id)}


@pytest.fixture(scope="function")
def test_db():
    """Create test database"""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def org(test_db):
    """
    Demo organization:

    - grades junior (1) and senior (2)
    - admin (org_admin + admin), accounting (accounting_manager),
      manager (reports to admin), employee (junior, reports to manager),
      loner (senior, no manager)
    - chain A "Standard" (default): direct manager
    - chain B "Large": direct manager, accounting manager, org admin (skipped under 20,000)
    - any grade [0, 5000] -> A, [5000, open] -> B
    - accommodation limited to 200 per night
    """
    db = TestingSessionLocal()

    organization = Organization(name="Test Org")
    db.add(organization)
    db.flush()

    junior = EmployeeGrade(organization_id=organization.id, name="Junior", level=1)
    senior = EmployeeGrade(organization_id=organization.id, name="Senior", level=2)
    db.add_all([junior, senior])
    db.flush()

    def add_user(email, roles, grade=None, manager_id=None):
        user = User(
            organization_id=organization.id,
            email=email,
            full_name=email.split("@")[0].title(),
            grade_id=grade.id if grade else None,
            manager_id=manager_id,
            is_active=True,
        )
        db.add(user)
        db.flush()
        for role in roles:
            db.add(UserRoleAssignment(user_id=user.id, role=role))
        return user

    admin = add_user("admin@test.org", [UserRole.ORG_ADMIN, UserRole.ADMIN], grade=senior)
    accounting = add_user("accounting@test.org", [UserRole.ACCOUNTING_MANAGER], grade=senior, manager_id=admin.id)
    manager = add_user("manager@test.org", [UserRole.MANAGER], grade=senior, manager_id=admin.id)
    employee = add_user("employee@test.org", [UserRole.USER], grade=junior, manager_id=manager.id)
    loner = add_user("loner@test.org", [UserRole.USER], grade=senior)

    chain_a = ApprovalChain(organization_id=organization.id, name="Standard", is_default=True)
    chain_a.levels = [
        ApprovalChainLevel(level_order=1, level_type=LevelType.DIRECT_MANAGER, is_required=True),
    ]
    chain_b = ApprovalChain(organization_id=organization.id, name="Large")
    chain_b.levels = [
        ApprovalChainLevel(level_order=1, level_type=LevelType.DIRECT_MANAGER, is_required=True),
        ApprovalChainLevel(level_order=2, level_type=LevelType.ACCOUNTING_MANAGER, is_required=True),
        ApprovalChainLevel(level_order=3, level_type=LevelType.ORG_ADMIN, is_required=True,
                           skip_if_amount_under=20000),
    ]
    db.add_all([chain_a, chain_b])
    db.flush()

    db.add_all([
        GradeChainAssignment(organization_id=organization.id, chain_id=chain_a.id, min_amount=0, max_amount=5000),
        GradeChainAssignment(organization_id=organization.id, chain_id=chain_b.id, min_amount=5000, max_amount=None),
        PolicyRule(organization_id=organization.id, category=PolicyCategory.ACCOMMODATION, max_amount=200,
                   destination_type=DestinationType.ALL, per_type=PerType.PER_DAY),
    ])
    db.commit()

    ids = SimpleNamespace(
        id=organization.id,
        junior=junior.id,
        senior=senior.id,
        admin=admin.id,
        accounting=accounting.id,
        manager=manager.id,
        employee=employee.id,
        loner=loner.id,
        chain_a=chain_a.id,
        chain_b=chain_b.id,
    )
    db.close()
    return ids


class TestContextHeaders:
    """Test acting-user resolution"""

    def test_health(self):
        """Test health endpoint needs no context"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_headers(self, org):
        """Test request without context headers"""
        response = client.get("/api/chains")
        assert response.status_code == 422

    def test_user_from_other_organization(self, org):
        """Test user id that does not belong to the organization"""
        response = client.get("/api/chains", headers={"X-Organization-Id": str(org.id + 1),
                                                      "X-User-Id": str(org.admin)})
        assert response.status_code == 401

    def test_non_admin_cannot_create_chain(self, org):
        """Test chain creation requires an admin role"""
        response = client.post(
            "/api/chains",
            json={"name": "Sneaky", "levels": []},
            headers=headers(org, org.employee),
        )
        assert response.status_code == 403


class TestChainAdministration:
    """Test chain and level endpoints"""

    def test_list_chains(self, org):
        """Test listing chains with their levels"""
        response = client.get("/api/chains", headers=headers(org, org.employee))
        assert response.status_code == 200
        chains = {c["name"]: c for c in response.json()}
        assert set(chains) == {"Standard", "Large"}
        assert [l["level_order"] for l in chains["Large"]["levels"]] == [1, 2, 3]

    def test_create_chain_numbers_levels(self, org):
        """Test levels are numbered 1..n in the order given"""
        response = client.post(
            "/api/chains",
            json={
                "name": "Finance first",
                "levels": [
                    {"level_type": "accounting_manager"},
                    {"level_type": "specific_user", "specific_user_id": org.admin},
                ],
            },
            headers=headers(org, org.admin),
        )
        assert response.status_code == 201
        data = response.json()
        assert [(l["level_order"], l["level_type"]) for l in data["levels"]] == [
            (1, "accounting_manager"),
            (2, "specific_user"),
        ]

    def test_specific_user_level_requires_user(self, org):
        """Test specific_user level without a user is rejected"""
        response = client.post(
            f"/api/chains/{org.chain_a}/levels",
            json={"level_type": "specific_user"},
            headers=headers(org, org.admin),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "chain_configuration_error"

    def test_other_level_kinds_cannot_reference_user(self, org):
        """Test a role level that references a user is rejected"""
        response = client.post(
            f"/api/chains/{org.chain_a}/levels",
            json={"level_type": "org_admin", "specific_user_id": org.admin},
            headers=headers(org, org.admin),
        )
        assert response.status_code == 400

    def test_unknown_level_type_on_update(self, org):
        """Test an unknown level type is a configuration error"""
        db = TestingSessionLocal()
        try:
            level = db.query(ApprovalChainLevel).filter(ApprovalChainLevel.chain_id == org.chain_a).one()
            with pytest.raises(ChainConfigurationError):
                approval_chain_service.update_level(
                    db, RequestContext(organization_id=org.id, user_id=org.admin),
                    org.chain_a, level.id, {"level_type": "ceo"},
                )
        finally:
            db.close()

    def test_add_level_appends(self, org):
        """Test adding a level puts it at the end"""
        response = client.post(
            f"/api/chains/{org.chain_a}/levels",
            json={"level_type": "accounting_manager", "skip_if_amount_under": 1000},
            headers=headers(org, org.admin),
        )
        assert response.status_code == 201
        assert response.json()["level_order"] == 2

    def test_remove_level_renumbers(self, org):
        """Test removing a middle level keeps orders contiguous"""
        chain = client.get(f"/api/chains/{org.chain_b}", headers=headers(org, org.admin)).json()
        middle = chain["levels"][1]

        response = client.delete(
            f"/api/chains/{org.chain_b}/levels/{middle['id']}",
            headers=headers(org, org.admin),
        )
        assert response.status_code == 200
        levels = response.json()["levels"]
        assert [(l["level_order"], l["level_type"]) for l in levels] == [
            (1, "direct_manager"),
            (2, "org_admin"),
        ]

    def test_single_default_chain(self, org):
        """Test marking a chain default clears the previous default"""
        response = client.patch(
            f"/api/chains/{org.chain_b}",
            json={"is_default": True},
            headers=headers(org, org.admin),
        )
        assert response.status_code == 200
        assert response.json()["is_default"] is True

        chains = client.get("/api/chains", headers=headers(org, org.admin)).json()
        assert [c["id"] for c in chains if c["is_default"]] == [org.chain_b]

    def test_changes_are_audited(self, org):
        """Test chain changes write audit rows"""
        client.post(
            f"/api/chains/{org.chain_a}/levels",
            json={"level_type": "org_admin"},
            headers=headers(org, org.admin),
        )
        db = TestingSessionLocal()
        try:
            entry = db.query(AuditLog).filter(AuditLog.action == "add_chain_level").first()
            assert entry is not None
            assert entry.user_id == org.admin
            assert entry.entity_id == org.chain_a
        finally:
            db.close()


class TestChainResolutionEndpoint:
    """Test GET /api/chains/resolve"""

    def test_resolve_small_amount(self, org):
        response = client.get("/api/chains/resolve", params={"amount": 1200, "grade_id": org.junior},
                              headers=headers(org, org.employee))
        assert response.status_code == 200
        assert response.json()["chain"]["id"] == org.chain_a

    def test_resolve_boundary_goes_to_upper_range(self, org):
        """Test 5000 belongs to both ranges and resolves to the range starting at 5000"""
        response = client.get("/api/chains/resolve", params={"amount": 5000},
                              headers=headers(org, org.employee))
        assert response.status_code == 200
        assert response.json()["chain"]["id"] == org.chain_b

    def test_resolve_negative_amount(self, org):
        response = client.get("/api/chains/resolve", params={"amount": -5},
                              headers=headers(org, org.employee))
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_amount"


class TestAssignmentsAndGrades:
    """Test grade assignments and grade endpoints"""

    def test_grade_specific_assignment_wins(self, org):
        """Test an exact-grade assignment beats the wildcard ranges"""
        response = client.post(
            "/api/chains/assignments",
            json={"chain_id": org.chain_b, "grade_id": org.senior, "min_amount": 0, "max_amount": 100000},
            headers=headers(org, org.admin),
        )
        assert response.status_code == 201

        response = client.get("/api/chains/resolve", params={"amount": 100, "grade_id": org.senior},
                              headers=headers(org, org.admin))
        assert response.json()["chain"]["id"] == org.chain_b

    def test_assignment_inverted_range(self, org):
        response = client.post(
            "/api/chains/assignments",
            json={"chain_id": org.chain_b, "min_amount": 500, "max_amount": 100},
            headers=headers(org, org.admin),
        )
        assert response.status_code == 422

    def test_create_and_list_grades(self, org):
        response = client.post("/api/grades", json={"name": "Director", "level": 3},
                               headers=headers(org, org.admin))
        assert response.status_code == 201

        grades = client.get("/api/grades", headers=headers(org, org.employee)).json()
        assert [g["name"] for g in grades] == ["Junior", "Senior", "Director"]
