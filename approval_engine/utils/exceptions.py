"""
Approval Engine Exceptions

Every error the engine raises derives from ApprovalEngineError and carries
a stable ``code`` plus the HTTP status the API layer maps it to.
Configuration errors are ``fatal``: they need an administrator to fix the
organization's setup and are never papered over with a substitute approver.
"""

from typing import Any, Dict, List, Optional


class ApprovalEngineError(Exception):
    """Base exception for the approval engine"""

    code = "approval_engine_error"
    status_code = 400
    fatal = False
    benign = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a JSON-friendly dict"""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "type": self.__class__.__name__,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code='{self.code}', message='{self.message}')"


# ========================================
# Configuration errors
# ========================================

class ConfigurationError(ApprovalEngineError):
    """Organization setup prevents routing; requires administrator action"""

    code = "configuration_error"
    status_code = 500
    fatal = True


class NoApplicableChain(ConfigurationError):
    code = "no_applicable_chain"

    def __init__(self, organization_id: int, grade_id: Optional[int], amount: float):
        super().__init__(
            f"No approval chain matches grade {grade_id} and amount {amount} "
            f"and organization {organization_id} has no default chain",
            {"organization_id": organization_id, "grade_id": grade_id, "amount": amount},
        )


class NoManagerAssigned(ConfigurationError):
    code = "no_manager_assigned"

    def __init__(self, user_id: int, level_order: int):
        super().__init__(
            f"User {user_id} has no direct manager for required level {level_order}",
            {"user_id": user_id, "level_order": level_order},
        )


class NoRoleOccupant(ConfigurationError):
    code = "no_role_occupant"

    def __init__(self, role: str, organization_id: int, level_order: int):
        super().__init__(
            f"Nobody holds the {role} role in organization {organization_id} "
            f"(required level {level_order})",
            {"role": role, "organization_id": organization_id, "level_order": level_order},
        )


class ReferencedUserMissing(ConfigurationError):
    code = "referenced_user_missing"

    def __init__(self, user_id: Optional[int], level_order: int):
        super().__init__(
            f"Approver {user_id} referenced by level {level_order} no longer exists",
            {"user_id": user_id, "level_order": level_order},
        )


class ChainConfigurationError(ApprovalEngineError):
    """Invalid administrative change to a chain, level or assignment"""

    code = "chain_configuration_error"
    status_code = 400


# ========================================
# Validation errors
# ========================================

class FieldValidationError(ApprovalEngineError):
    """A single offending field; collected into SubmissionValidationError"""

    code = "validation_error"
    status_code = 422

    def __init__(self, field: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.field = field
        super().__init__(message, {"field": field, **(details or {})})


class MissingField(FieldValidationError):
    code = "missing_field"

    def __init__(self, field: str):
        super().__init__(field, f"{field} is required")


class InvalidAmount(FieldValidationError):
    code = "invalid_amount"

    def __init__(self, field: str, value: Any, reason: str = "must be a non-negative number"):
        super().__init__(field, f"{field} {reason} (got {value!r})", {"value": str(value)})


class MissingViolationExplanation(FieldValidationError):
    code = "missing_violation_explanation"

    def __init__(self, category: str, overage_percentage: float):
        super().__init__(
            f"explanations.{category}",
            f"Policy violation on {category} ({overage_percentage:.1f}% over limit) needs an explanation",
            {"category": category, "overage_percentage": overage_percentage},
        )


class SubmissionValidationError(ApprovalEngineError):
    """All problems found while validating a submission, reported together"""

    code = "submission_invalid"
    status_code = 422

    def __init__(self, errors: List[FieldValidationError]):
        self.errors = errors
        super().__init__(
            f"Submission has {len(errors)} validation error(s)",
            {"errors": [e.to_dict() for e in errors]},
        )


# ========================================
# Workflow errors
# ========================================

class AlreadyDecided(ApprovalEngineError):
    """Another decision reached the approval record first"""

    code = "already_decided"
    status_code = 409
    benign = True

    def __init__(self, approval_id: int):
        super().__init__(
            "Someone else just decided this approval",
            {"approval_id": approval_id},
        )


class InvalidTransition(ApprovalEngineError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, kind: str, current: str, target: str):
        super().__init__(
            f"A {kind} cannot move from {current} to {target}",
            {"kind": kind, "from": current, "to": target},
        )


class NotAuthorizedApprover(ApprovalEngineError):
    code = "not_authorized_approver"
    status_code = 403

    def __init__(self, user_id: int, approval_id: int):
        super().__init__(
            f"User {user_id} may not decide approval {approval_id}",
            {"user_id": user_id, "approval_id": approval_id},
        )


class EntityNotFound(ApprovalEngineError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})
