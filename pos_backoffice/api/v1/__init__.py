"""
API v1 package initialization.
"""

from pos_backoffice.api.v1.order_modifications import router as order_modifications_router

__all__ = ["order_modifications_router"]
