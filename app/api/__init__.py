from app.api.routes.auth import router as auth_router
from app.api.routes.mfa import router as mfa_router
from app.api.routes.recovery_codes import router as recovery_codes_router
from app.api.routes.users import router as users_router

__all__ = ["auth_router", "mfa_router", "recovery_codes_router", "users_router"]
