"""
Engine entry points

    from approval_engine.services import submit, decide

Every call that acts for a user takes an explicit RequestContext.
"""

from approval_engine.services.context import RequestContext
from approval_engine.services.grade_assignment_resolver import grade_assignment_service
from approval_engine.services.chain_level_resolver import chain_level_resolver
from approval_engine.services.policy_compliance import policy_compliance_service
from approval_engine.services.approval_workflow import approval_workflow_service

resolve_chain = grade_assignment_service.resolve_chain
resolve_approver = chain_level_resolver.resolve_approver
evaluate_policy = policy_compliance_service.evaluate_policy
submit = approval_workflow_service.submit
decide = approval_workflow_service.decide
reopen = approval_workflow_service.reopen
close = approval_workflow_service.close
pending_for = approval_workflow_service.pending_for

__all__ = [
    "RequestContext",
    "resolve_chain",
    "resolve_approver",
    "evaluate_policy",
    "submit",
    "decide",
    "reopen",
    "close",
    "pending_for",
]
