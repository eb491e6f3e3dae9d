# contact_api/routes/__init__.py
"""
API route handlers organized by domain.
"""

from contact_api.routes.contact import router as contact_router
from contact_api.routes.csrf import router as csrf_router
from contact_api.routes.health import router as health_router

__all__ = [
    "contact_router",
    "csrf_router",
    "health_router",
]
