"""
Request Context
Who is acting, and for which organization
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RequestContext:
    """Passed explicitly into every engine call that acts for a user"""
    organization_id: int
    user_id: int
