"""
Approval Chain Engine
Approval routing and policy compliance for expense reports and travel requests
"""

__version__ = "1.0.0"
