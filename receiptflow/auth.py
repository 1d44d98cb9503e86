"""Identity provider adapter: trusted session identity from request headers"""
from typing import Optional
from fastapi import Header, HTTPException

from .models import Identity, Role


def get_identity(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None)
) -> Identity:
    """Credentials are verified upstream; this only reads the result"""
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Missing user identity")
    try:
        role = Role(x_user_role.lower())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role: {x_user_role}")
    return Identity(userId=x_user_id, role=role, name=x_user_name)
