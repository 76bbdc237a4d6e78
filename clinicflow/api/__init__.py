# API Package - Centralized imports
# Allows easy importing of all routers and auth dependencies

from .auth import router as auth_router, get_current_user, require_roles, create_access_token
from .catalog import router as catalog_router, doctors_router
from .appointments import router as appointments_router
from .treatment_plans import router as treatment_plans_router
from .lab import router as lab_router
from .pharmacy import router as pharmacy_router
from .upload import router as upload_router

__all__ = [
    # Auth
    "auth_router",
    "get_current_user",
    "require_roles",
    "create_access_token",

    # Routers
    "catalog_router",
    "doctors_router",
    "appointments_router",
    "treatment_plans_router",
    "lab_router",
    "pharmacy_router",
    "upload_router",
]
