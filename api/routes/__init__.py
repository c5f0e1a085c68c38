"""
Identity Search API Routes Package.

This package contains all FastAPI route handlers organized by domain.
Use this module to import routers for registration with the FastAPI app.

Example:
    from api.routes import identity_router, imessage_router

    app.include_router(identity_router)
    app.include_router(imessage_router)
"""

# ============================================================================
# Identity Routers
# ============================================================================

from api.routes.identity import router as identity_router

# ============================================================================
# Integration Routers
# ============================================================================

from api.routes.imessage import router as imessage_router


__all__ = [
    "identity_router",
    "imessage_router",
]
