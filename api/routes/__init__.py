"""
API Routes Package

This package contains route handlers organized by feature:
- enrollment.py: face registration and landmark analysis
- authentication.py: face authentication and its statistics
- management.py: REST endpoints for user management
"""

from api.routes.enrollment import router as enrollment_router
from api.routes.authentication import router as authentication_router
from api.routes.management import router as management_router

__all__ = [
    "enrollment_router",
    "authentication_router",
    "management_router",
]
