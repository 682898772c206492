"""
Database package initialization.

Submodules:
- base: declarative base and common mixins
- connection: async engine, session factory and FastAPI dependency
- models: ORM models for orders, amendments, versions and shipments
"""

__all__ = []
