"""
HTTP API package.

Submodules:
- deps: authentication, role checks and service dependencies
- v1: versioned routers
"""
