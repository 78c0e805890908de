"""
Policy Compliance Service
Compares requested budget lines against the organization's policy rules
"""

from dataclasses import dataclass, asdict
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from approval_engine.config.settings import settings
from approval_engine.models.policy import DestinationType, PerType, PolicyCategory, PolicyRule
from approval_engine.models.spend_request import SpendRequest
from approval_engine.services.audit_service import audit_service
from approval_engine.services.context import RequestContext
from approval_engine.utils.helpers import coerce_amount
from approval_engine.utils.exceptions import EntityNotFound, InvalidAmount
from approval_engine.utils.logger import setup_logger

logger = setup_logger()


@dataclass
class RequestedAmounts:
    """
    Requested budget, each line in the unit the employee fills it in:
    flights, transport and other are trip totals, accommodation is per
    night and meals are per day.
    """
    flights: float = 0
    accommodation_per_night: float = 0
    meals_per_day: float = 0
    transport: float = 0
    other: float = 0

    @classmethod
    def from_mapping(cls, data: Dict) -> "RequestedAmounts":
        """Build from user input; raises InvalidAmount on bad values"""
        values = {}
        for name in cls.__dataclass_fields__:
            values[name] = coerce_amount(data.get(name), name) or 0
        return cls(**values)

    @classmethod
    def from_request(cls, request: SpendRequest) -> "RequestedAmounts":
        return cls.from_mapping(request.requested_budget())


@dataclass
class TripMeta:
    nights: int = 0
    days: int = 0
    destination_type: DestinationType = DestinationType.DOMESTIC

    def __post_init__(self):
        for name in ("nights", "days"):
            value = getattr(self, name)
            if value is None or isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidAmount(name, value, "must be a non-negative whole number")
        self.destination_type = DestinationType(self.destination_type)


@dataclass
class PolicyViolation:
    """A requested amount over its policy limit"""
    category: PolicyCategory
    requested_amount: float
    policy_limit: float
    overage_amount: float
    overage_percentage: float
    per_type: PerType
    currency: Optional[str] = None
    rule_id: Optional[int] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["category"] = self.category.value
        data["per_type"] = self.per_type.value
        return data


class PolicyComplianceEvaluator:
    """Pure rule selection, unit normalization and overage computation"""

    def __init__(
        self,
        explanation_threshold: Optional[float] = None,
        escalation_threshold: Optional[float] = None
    ):
        self.explanation_threshold = (
            settings.SUBMISSION_EXPLANATION_THRESHOLD if explanation_threshold is None else explanation_threshold
        )
        self.escalation_threshold = (
            settings.ESCALATION_THRESHOLD if escalation_threshold is None else escalation_threshold
        )

    def select_rule(
        self,
        rules: Iterable[PolicyRule],
        category: PolicyCategory,
        grade_id: Optional[int],
        destination_type: DestinationType
    ) -> Optional[PolicyRule]:
        """
        Applicable rule for a category.
        Grade-specific beats grade-less, then exact destination beats "all".
        """
        matching = [
            rule for rule in rules
            if rule.is_active is not False
            and PolicyCategory(rule.category) == category
            and (rule.grade_id is None or rule.grade_id == grade_id)
            and DestinationType(rule.destination_type or DestinationType.ALL) in (destination_type, DestinationType.ALL)
        ]
        if not matching:
            return None
        matching.sort(key=lambda rule: (
            0 if rule.grade_id is not None else 1,
            0 if DestinationType(rule.destination_type or DestinationType.ALL) == destination_type else 1,
            rule.id or 0,
        ))
        return matching[0]

    def normalize(
        self,
        category: PolicyCategory,
        per_type: PerType,
        amounts: RequestedAmounts,
        trip: TripMeta
    ) -> float:
        """Express the requested line in the rule's per_type unit"""
        if category == PolicyCategory.ACCOMMODATION:
            per_night = amounts.accommodation_per_night
            return per_night * trip.nights if per_type == PerType.PER_TRIP else per_night

        if category == PolicyCategory.FOOD:
            per_day = amounts.meals_per_day
            return per_day * trip.days if per_type == PerType.PER_TRIP else per_day

        trip_total = {
            PolicyCategory.FLIGHTS: amounts.flights,
            PolicyCategory.TRANSPORTATION: amounts.transport,
            PolicyCategory.MISCELLANEOUS: amounts.other,
        }[category]
        if per_type == PerType.PER_DAY:
            return trip_total / trip.days if trip.days > 0 else 0
        return trip_total

    def evaluate(
        self,
        amounts: RequestedAmounts,
        trip: TripMeta,
        grade_id: Optional[int],
        rules: Iterable[PolicyRule]
    ) -> List[PolicyViolation]:
        """
        Evaluate requested amounts against policy rules

        Args:
            amounts: Requested budget
            trip: Trip length and destination type
            grade_id: Requester grade
            rules: The organization's rules

        Returns:
            List of violations, in category order (empty when compliant)
        """
        rules = list(rules)
        violations: List[PolicyViolation] = []

        for category in PolicyCategory:
            rule = self.select_rule(rules, category, grade_id, trip.destination_type)
            # No rule, or no positive limit: open by default
            if rule is None or not rule.max_amount:
                continue

            limit = float(rule.max_amount)
            per_type = PerType(rule.per_type or PerType.PER_TRIP)
            requested = self.normalize(category, per_type, amounts, trip)
            if requested <= limit:
                continue

            overage = requested - limit
            percentage = overage / limit * 100
            violations.append(PolicyViolation(
                category=category,
                requested_amount=requested,
                policy_limit=limit,
                overage_amount=overage,
                overage_percentage=percentage,
                per_type=per_type,
                currency=rule.currency,
                rule_id=rule.id,
            ))

        if violations:
            logger.info(
                "Policy violations: " + ", ".join(
                    f"{v.category.value} +{v.overage_percentage:.1f}%" for v in violations
                )
            )
        return violations

    def requires_special_approval(self, violation: PolicyViolation) -> bool:
        return violation.overage_percentage > self.explanation_threshold

    def requires_escalation(self, overage_percentages: Iterable[float]) -> bool:
        """True when the worst overage crosses the escalation threshold"""
        return max(overage_percentages, default=0) > self.escalation_threshold


class PolicyComplianceService:
    """Fetches an organization's rules and evaluates requests against them"""

    def __init__(self, evaluator: Optional[PolicyComplianceEvaluator] = None):
        self.evaluator = evaluator or PolicyComplianceEvaluator()

    def get_rules(self, db: Session, organization_id: int) -> List[PolicyRule]:
        return db.query(PolicyRule).filter(
            PolicyRule.organization_id == organization_id,
            PolicyRule.is_active == True
        ).order_by(PolicyRule.id).all()

    def evaluate_policy(
        self,
        db: Session,
        organization_id: int,
        amounts: RequestedAmounts,
        trip: TripMeta,
        grade_id: Optional[int]
    ) -> List[PolicyViolation]:
        rules = self.get_rules(db, organization_id)
        return self.evaluator.evaluate(amounts, trip, grade_id, rules)

    def evaluate_request(self, db: Session, request: SpendRequest, grade_id: Optional[int]) -> List[PolicyViolation]:
        """Evaluate a stored request's requested budget"""
        trip = TripMeta(
            nights=request.nights or 0,
            days=request.days or 0,
            destination_type=request.destination_type,
        )
        return self.evaluate_policy(
            db, request.organization_id, RequestedAmounts.from_request(request), trip, grade_id
        )


    # Rule administration

    RULE_FIELDS = ("category", "max_amount", "currency", "destination_type", "per_type", "grade_id", "notes", "is_active")

    def get_rule(self, db: Session, ctx: RequestContext, rule_id: int) -> PolicyRule:
        rule = db.query(PolicyRule).filter(
            PolicyRule.id == rule_id,
            PolicyRule.organization_id == ctx.organization_id
        ).first()
        if not rule:
            raise EntityNotFound("PolicyRule", rule_id)
        return rule

    def _clean_rule_values(self, values: Dict) -> Dict:
        cleaned = {k: v for k, v in values.items() if k in self.RULE_FIELDS}
        if "max_amount" in cleaned:
            cleaned["max_amount"] = coerce_amount(cleaned["max_amount"], "max_amount")
        if cleaned.get("category") is not None:
            cleaned["category"] = PolicyCategory(cleaned["category"])
        if cleaned.get("destination_type") is not None:
            cleaned["destination_type"] = DestinationType(cleaned["destination_type"])
        if cleaned.get("per_type") is not None:
            cleaned["per_type"] = PerType(cleaned["per_type"])
        return cleaned

    def create_rule(self, db: Session, ctx: RequestContext, values: Dict) -> PolicyRule:
        """Create a policy rule for the acting organization"""
        rule = PolicyRule(organization_id=ctx.organization_id, created_by=ctx.user_id, **self._clean_rule_values(values))
        try:
            db.add(rule)
            db.flush()
            audit_service.record(
                db, ctx, "create_policy_rule", "policy_rule", rule.id,
                f"{rule.category.value} limit {rule.max_amount} {rule.currency}",
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(rule)
        logger.info(f"Policy rule {rule.id} created for org {ctx.organization_id}")
        return rule

    def update_rule(self, db: Session, ctx: RequestContext, rule_id: int, values: Dict) -> PolicyRule:
        rule = self.get_rule(db, ctx, rule_id)
        cleaned = self._clean_rule_values(values)
        try:
            for field, value in cleaned.items():
                setattr(rule, field, value)
            audit_service.record(
                db, ctx, "update_policy_rule", "policy_rule", rule.id,
                f"Updated {rule.category.value} rule",
                changes={k: getattr(v, "value", v) for k, v in cleaned.items()},
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(rule)
        return rule

    def deactivate_rule(self, db: Session, ctx: RequestContext, rule_id: int) -> PolicyRule:
        return self.update_rule(db, ctx, rule_id, {"is_active": False})


# Create singleton instance
policy_compliance_service = PolicyComplianceService()
