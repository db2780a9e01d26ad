from src.auth.context import AuthContext, PartnerContext, SuperAdminContext
from src.auth.dependencies import (
    get_current_auth,
    get_current_partner,
    get_current_super_admin,
    has_permission,
    require_internal_scheduler,
    require_permission,
)
from src.auth.jwt import create_access_token, create_super_admin_token

__all__ = [
    "AuthContext",
    "PartnerContext",
    "SuperAdminContext",
    "get_current_auth",
    "get_current_partner",
    "get_current_super_admin",
    "has_permission",
    "require_internal_scheduler",
    "require_permission",
    "create_access_token",
    "create_super_admin_token",
]
