from docdump.auth.token import (
    CurrentOwner,
    TokenPayload,
    create_access_token,
    get_current_owner,
    get_current_user,
    verify_token,
)

__all__ = [
    "TokenPayload", "verify_token", "create_access_token",
    "get_current_user", "get_current_owner", "CurrentOwner",
]
