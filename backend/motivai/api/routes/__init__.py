"""
API route modules.
"""
from motivai.api.routes import subscriptions

__all__ = ["subscriptions"]
